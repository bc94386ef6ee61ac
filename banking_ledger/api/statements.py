"""
Statement endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from .deps import BankingSystem, get_banking_system, get_requester_id
from .errors import success
from .schemas import GenerateStatementRequest, as_utc


router = APIRouter()


@router.post("/accounts/{account_id}/statements", status_code=status.HTTP_201_CREATED)
def generate_statement(
    account_id: str,
    request: GenerateStatementRequest,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Generate a statement for a period, or return the one already generated"""
    statement = system.statement_service.generate_statement(
        account_id, requester_id, as_utc(request.start_date), as_utc(request.end_date)
    )
    return success(statement.to_response())


@router.get("/accounts/{account_id}/statements")
def list_statements(
    account_id: str,
    year: Optional[int] = Query(None, ge=1900, le=9999),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    statements, meta = system.statement_service.list_statements(
        account_id, requester_id, year=year, page=page,
        limit=system.config.statement_page_size if limit is None else limit
    )
    return success([s.to_response() for s in statements], meta.to_dict())


@router.get("/statements/{statement_id}")
def get_statement(
    statement_id: str,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return success(system.statement_service.get_statement(statement_id, requester_id).to_response())

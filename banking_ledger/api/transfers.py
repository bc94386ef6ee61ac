"""
Transfer endpoints
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query, status

from .deps import BankingSystem, get_banking_system, get_requester_id
from .errors import success, unwrap
from .schemas import TransferRequest, as_utc, parse_enum
from ..transfers import TransferDirection, TransferStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_transfer(
    request: TransferRequest,
    idempotency_key: Optional[str] = Header(None),
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Move funds between two accounts; the Idempotency-Key header makes retries safe"""
    transfer = unwrap(system.transfer_service.execute(
        requester_id=requester_id,
        from_account_id=request.from_account_id,
        to_account_id=request.to_account_id,
        amount=request.amount,
        currency=request.currency,
        description=request.description,
        idempotency_key=idempotency_key
    ))
    return success(transfer.to_response())


@router.get("")
def list_transfers(
    transfer_status: Optional[str] = Query(None, alias="status"),
    direction: str = Query("all"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """List transfers touching the requester's accounts"""
    transfers, meta = unwrap(system.transfer_service.list_transfers(
        requester_id,
        status=parse_enum(TransferStatus, transfer_status, "status"),
        direction=parse_enum(TransferDirection, direction, "direction"),
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
        page=page,
        limit=system.config.default_page_size if limit is None else limit
    ))
    return success([t.to_response() for t in transfers], meta.to_dict())


@router.get("/{transfer_id}")
def get_transfer(
    transfer_id: str,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get transfer details"""
    transfer = unwrap(system.transfer_service.get_transfer(transfer_id, requester_id))
    return success(transfer.to_response())


@router.post("/{transfer_id}/cancel")
def cancel_transfer(
    transfer_id: str,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Cancel a pending transfer"""
    transfer = unwrap(system.transfer_service.cancel_transfer(transfer_id, requester_id))
    return success(transfer.to_response())

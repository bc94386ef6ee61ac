"""
Ledger entry endpoints
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query

from .deps import BankingSystem, get_banking_system, get_requester_id
from .errors import success, unwrap
from .schemas import as_utc, parse_enum
from ..ledger import EntryType


router = APIRouter()


@router.get("/accounts/{account_id}/transactions")
def list_account_transactions(
    account_id: str,
    entry_type: Optional[str] = Query(None, alias="type"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """List an account's ledger entries, newest first"""
    entries, meta = system.ledger.list_entries(
        account_id,
        requester_id,
        entry_type=parse_enum(EntryType, entry_type, "type"),
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
        search=search,
        page=page,
        limit=system.config.default_page_size if limit is None else limit
    )
    return success([e.to_dict() for e in entries], meta.to_dict())


@router.get("/accounts/{account_id}/transactions/summary")
def get_transaction_summary(
    account_id: str,
    days: Optional[int] = Query(None),
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Activity statistics for a trailing window of days"""
    summary = unwrap(system.summary_aggregator.summarize(account_id, requester_id, days))
    return success(summary.to_dict())


@router.get("/transactions/{transaction_id}")
def get_transaction(
    transaction_id: str,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get a single ledger entry"""
    return success(system.ledger.get_entry(transaction_id, requester_id).to_dict())

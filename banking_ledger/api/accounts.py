"""
Account management endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from .deps import BankingSystem, get_banking_system, get_requester_id
from .errors import success
from .schemas import CreateAccountRequest, UpdateAccountRequest, parse_enum
from ..accounts import AccountStatus, AccountType


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a new account for the requester"""
    account = system.account_manager.create_account(
        owner_id=requester_id,
        account_type=parse_enum(AccountType, request.account_type, "account_type"),
        currency=request.currency or system.config.default_currency,
        initial_deposit=request.initial_deposit
    )
    return success(account.to_dict())


@router.get("")
def list_accounts(
    account_type: Optional[str] = Query(None, alias="type"),
    account_status: Optional[str] = Query(None, alias="status"),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """List the requester's accounts"""
    accounts, meta = system.account_manager.list_accounts(
        owner_id=requester_id,
        account_type=parse_enum(AccountType, account_type, "type"),
        status=parse_enum(AccountStatus, account_status, "status"),
        page=page,
        limit=system.config.default_page_size if limit is None else limit
    )
    return success([a.to_dict() for a in accounts], meta.to_dict())


@router.get("/{account_id}")
def get_account(
    account_id: str,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get account details"""
    return success(system.account_manager.get_account(account_id, requester_id).to_dict())


@router.patch("/{account_id}")
def update_account(
    account_id: str,
    request: UpdateAccountRequest,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Change account status"""
    account = system.account_manager.update_status(
        account_id, requester_id, parse_enum(AccountStatus, request.status, "status")
    )
    return success(account.to_dict())


@router.get("/{account_id}/balance")
def get_balance(
    account_id: str,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get current balance"""
    balance = system.account_manager.get_balance(account_id, requester_id)
    balance["balance"] = str(balance["balance"])
    return success(balance)


@router.get("/{account_id}/ledger/verify")
def verify_ledger(
    account_id: str,
    requester_id: str = Depends(get_requester_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Replay the account's ledger and compare with the stored balance"""
    system.account_manager.get_account(account_id, requester_id)
    return success(system.ledger.verify_account(account_id).to_dict())

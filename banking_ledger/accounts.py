"""
Account Management Module

Account rows, their lifecycle states, and the repository used by the
ledger writer and transfer orchestrator. An account's balance is only
ever changed by the ledger writer inside an atomic unit that also appends
the matching ledger entry.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple
from enum import Enum
import random
import uuid

from .currency import Currency, parse_amount
from .storage import StorageInterface, StorageRecord, UniqueConstraintError, parse_datetime
from .audit import AuditTrail, AuditEventType
from .errors import NotFoundError, ValidationError
from .pagination import PaginationMeta, paginate
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .ledger import LedgerWriter


class AccountType(Enum):
    """Banking product types"""
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT = "CREDIT"


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    FROZEN = "FROZEN"
    CLOSED = "CLOSED"


@dataclass
class Account(StorageRecord):
    account_number: str
    owner_id: str
    account_type: AccountType
    currency: Currency
    balance: Decimal
    status: AccountStatus = AccountStatus.ACTIVE
    last_entry_sequence: int = 0
    last_entry_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            account_number=data['account_number'],
            owner_id=data['owner_id'],
            account_type=AccountType(data['account_type']),
            currency=Currency[data['currency']],
            balance=Decimal(data['balance']),
            status=AccountStatus(data['status']),
            last_entry_sequence=data.get('last_entry_sequence', 0),
            last_entry_at=parse_datetime(data.get('last_entry_at'))
        )


@dataclass(frozen=True)
class AccountSummary:
    """Public projection of an account attached to transfers and entries"""
    id: str
    account_number: str
    account_type: AccountType
    owner_id: str

    @classmethod
    def of(cls, account: Account) -> 'AccountSummary':
        return cls(id=account.id, account_number=account.account_number,
                   account_type=account.account_type, owner_id=account.owner_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "account_number": self.account_number,
                "account_type": self.account_type.value, "owner_id": self.owner_id}


class AccountRepository:
    """Row-level access to the accounts table"""

    table_name = "accounts"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.storage.create_unique_index(self.table_name, "account_number")

    def get(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.table_name, account_id)
        return Account.from_dict(data) if data else None

    def get_for_update(self, account_id: str) -> Optional[Account]:
        """Load and lock the row; only meaningful inside ``storage.atomic()``"""
        data = self.storage.load_for_update(self.table_name, account_id)
        return Account.from_dict(data) if data else None

    def find_by_owner(self, owner_id: str) -> List[Account]:
        return [Account.from_dict(d) for d in self.storage.find(self.table_name, {"owner_id": owner_id})]

    def insert(self, account: Account) -> None:
        self.storage.insert(self.table_name, account.id, account.to_dict())

    def save(self, account: Account) -> None:
        self.storage.save(self.table_name, account.id, account.to_dict())


class AccountManager:
    """
    Manages account lifecycle and owner-scoped account queries
    """

    ACCOUNT_NUMBER_PREFIX = "1000"
    MAX_NUMBER_ATTEMPTS = 5

    def __init__(
        self,
        storage: StorageInterface,
        repository: AccountRepository,
        ledger: 'LedgerWriter',
        audit_trail: AuditTrail,
        max_page_size: int = 100
    ):
        self.storage = storage
        self.repository = repository
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.max_page_size = max_page_size
        self.logger = get_logger("banking_ledger.accounts")

    def _generate_account_number(self) -> str:
        return self.ACCOUNT_NUMBER_PREFIX + f"{random.randrange(10 ** 9):09d}"

    def create_account(
        self,
        owner_id: str,
        account_type: AccountType,
        currency: str = "USD",
        initial_deposit: Optional[Any] = None
    ) -> Account:
        """
        Open a new account, optionally funded by an initial deposit.

        The account row and the "Initial deposit" CREDIT entry are written in
        one atomic unit, so ledger replay always reproduces the balance.

        Args:
            owner_id: ID of the owning user
            account_type: CHECKING, SAVINGS or CREDIT
            currency: ISO currency code
            initial_deposit: Optional non-negative opening amount

        Returns:
            Created Account object with its final balance

        Raises:
            ValidationError: Bad currency or deposit amount
        """
        account_currency = Currency.from_code(currency)
        deposit = Decimal('0')
        if initial_deposit is not None:
            deposit = parse_amount(initial_deposit, account_currency)
            if deposit < 0:
                raise ValidationError("Initial deposit cannot be negative")

        for attempt in range(self.MAX_NUMBER_ATTEMPTS):
            now = datetime.now(timezone.utc)
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=self._generate_account_number(),
                owner_id=owner_id,
                account_type=account_type,
                currency=account_currency,
                balance=Decimal('0').quantize(account_currency.quantum)
            )
            try:
                with self.storage.atomic():
                    self.repository.insert(account)
                    if deposit > 0:
                        self.ledger.credit(
                            account,
                            amount=deposit,
                            currency=account_currency,
                            description="Initial deposit",
                            now=now
                        )
                    self.audit_trail.log_event(
                        event_type=AuditEventType.ACCOUNT_CREATED,
                        entity_type="account",
                        entity_id=account.id,
                        user_id=owner_id,
                        metadata={
                            "account_number": account.account_number,
                            "account_type": account_type.value,
                            "currency": account_currency.code,
                            "initial_deposit": str(deposit)
                        }
                    )
                break
            except UniqueConstraintError:
                # Account number collision; retry with a fresh number
                self.logger.warning("Account number collision on attempt %d", attempt + 1)
        else:
            raise ValidationError("Could not allocate a unique account number")

        log_action(
            self.logger, "info", "Account created",
            user_id=owner_id, action="create_account", resource=f"account:{account.id}",
            extra={"account_type": account_type.value, "currency": account_currency.code}
        )
        return account

    def get_account(self, account_id: str, owner_id: str) -> Account:
        """Get an account visible to its owner; anything else is 'not found'"""
        account = self.repository.get(account_id)
        if not account or account.owner_id != owner_id:
            raise NotFoundError("Account")
        return account

    def list_accounts(
        self,
        owner_id: str,
        account_type: Optional[AccountType] = None,
        status: Optional[AccountStatus] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Account], PaginationMeta]:
        """List an owner's accounts, newest first"""
        accounts = self.repository.find_by_owner(owner_id)
        if account_type:
            accounts = [a for a in accounts if a.account_type == account_type]
        if status:
            accounts = [a for a in accounts if a.status == status]
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return paginate(accounts, page, limit, self.max_page_size)

    def update_status(self, account_id: str, owner_id: str, new_status: AccountStatus) -> Account:
        """
        Change an account's status.

        Raises:
            NotFoundError: Account missing or not owned
            ValidationError: Closing with a non-zero balance, or reopening a CLOSED account
        """
        with self.storage.atomic():
            account = self.repository.get_for_update(account_id)
            if not account or account.owner_id != owner_id:
                raise NotFoundError("Account")

            if account.status == AccountStatus.CLOSED and new_status != AccountStatus.CLOSED:
                raise ValidationError("Closed accounts cannot be reopened")
            if new_status == AccountStatus.CLOSED and account.balance != 0:
                raise ValidationError("Cannot close account with non-zero balance")

            old_status = account.status
            account.status = new_status
            account.updated_at = datetime.now(timezone.utc)
            self.repository.save(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_STATUS_CHANGED,
                entity_type="account",
                entity_id=account.id,
                user_id=owner_id,
                metadata={"old_status": old_status.value, "new_status": new_status.value}
            )

        log_action(
            self.logger, "info", f"Account status changed to {new_status.value}",
            user_id=owner_id, action="update_account_status", resource=f"account:{account.id}"
        )
        return account

    def get_balance(self, account_id: str, owner_id: str) -> Dict[str, Any]:
        account = self.get_account(account_id, owner_id)
        return {
            "account_id": account.id,
            "balance": account.balance,
            "currency": account.currency.code,
            "status": account.status.value,
        }

"""
Transfer Orchestration Module

Moves funds between two accounts as a single atomic unit: the transfer row,
a DEBIT on the source, a CREDIT on the destination and both balance updates
commit together or not at all.

Checks run in a fixed order and each failure has its own error kind:

1. idempotency key already used by this requester -> original transfer
2. source missing, not owned or not active -> NOT_FOUND_OR_NOT_ACCESSIBLE
3. destination missing or not active -> NOT_FOUND
4. source == destination -> VALIDATION
5. currency != source currency -> CURRENCY_MISMATCH
6. amount <= 0 -> VALIDATION; balance < amount -> INSUFFICIENT_FUNDS

Status and funds are checked again against the rows locked inside the
atomic unit, so a concurrent transfer can never overdraw the source.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import uuid

from .accounts import Account, AccountRepository, AccountSummary
from .audit import AuditTrail, AuditEventType
from .currency import Currency, Money, parse_amount
from .errors import (
    BankingError, ConflictError, CurrencyMismatchError, InsufficientFundsError,
    InternalError, NotFoundError, Result, SourceAccountUnavailableError, ValidationError
)
from .idempotency import IdempotencyGuard
from .ledger import LedgerWriter
from .pagination import PaginationMeta, paginate
from .storage import StorageInterface, StorageRecord, UniqueConstraintError, parse_datetime
from .logging_config import get_logger, log_action


class TransferStatus(Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"        # Reserved for asynchronous settlement
    CANCELLED = "CANCELLED"


class TransferDirection(Enum):
    """Direction relative to the requester's own accounts"""
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    ALL = "all"


@dataclass
class Transfer(StorageRecord):
    """
    Movement of funds between two accounts
    """
    from_account_id: str
    to_account_id: str
    amount: Decimal
    currency: Currency
    description: str
    status: TransferStatus
    initiated_by: str
    idempotency_key: Optional[str] = None
    idempotency_scope: Optional[str] = None

    # Attached for responses only, never stored
    from_account: Optional[AccountSummary] = field(default=None, compare=False)
    to_account: Optional[AccountSummary] = field(default=None, compare=False)

    _TRANSIENT = ("from_account", "to_account")

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        for name in self._TRANSIENT:
            result.pop(name, None)
        result['currency'] = self.currency.code
        return result

    def to_response(self) -> Dict[str, Any]:
        result = self.to_dict()
        result.pop('idempotency_scope', None)
        result['amount'] = str(self.amount)
        result['from_account'] = self.from_account.to_dict() if self.from_account else None
        result['to_account'] = self.to_account.to_dict() if self.to_account else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transfer':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            from_account_id=data['from_account_id'],
            to_account_id=data['to_account_id'],
            amount=Decimal(data['amount']),
            currency=Currency[data['currency']],
            description=data['description'],
            status=TransferStatus(data['status']),
            initiated_by=data['initiated_by'],
            idempotency_key=data.get('idempotency_key'),
            idempotency_scope=data.get('idempotency_scope')
        )


class TransferService:
    """
    Executes, queries and cancels transfers.

    Every public operation returns a Result; business-rule failures come back
    as typed errors. Unexpected storage failures are raised as InternalError
    after the atomic unit has rolled back.
    """

    table_name = "transfers"

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountRepository,
        ledger: LedgerWriter,
        audit_trail: AuditTrail,
        default_currency: str = "USD",
        max_page_size: int = 100
    ):
        self.storage = storage
        self.accounts = accounts
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.default_currency = default_currency
        self.max_page_size = max_page_size
        self.idempotency = IdempotencyGuard(storage, self.table_name, Transfer.from_dict,
                                           owner_field="initiated_by")
        self.logger = get_logger("banking_ledger.transfers")

    # Execution

    def execute(
        self,
        requester_id: str,
        from_account_id: str,
        to_account_id: str,
        amount: Any,
        currency: Optional[str] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Result[Transfer]:
        """
        Execute a transfer between two accounts.

        Args:
            requester_id: User initiating the transfer; must own the source
            from_account_id: Account to debit
            to_account_id: Account to credit (any active account)
            amount: Positive Decimal, numeric string or int
            currency: ISO code, defaults to the configured default currency
            description: Optional free text
            idempotency_key: Optional client key; a repeat returns the original transfer

        Returns:
            Result holding the COMPLETED Transfer with account summaries attached
        """
        key = None
        try:
            key = IdempotencyGuard.validate_key(idempotency_key)
            existing = self.idempotency.find_by_key(requester_id, key)
            if existing:
                return Result.success(self._replay(existing, requester_id))

            transfer = self._execute(requester_id, from_account_id, to_account_id,
                                     amount, currency or self.default_currency, description, key)
        except ConflictError:
            # Lost an idempotency race; the winner's transfer is the answer
            winner = self.idempotency.find_by_key(requester_id, key)
            if winner is None:
                raise InternalError("Idempotency conflict without a stored transfer")
            return Result.success(self._replay(winner, requester_id))
        except BankingError as e:
            log_action(
                self.logger, "info", f"Transfer rejected: {e.message}",
                user_id=requester_id, action="execute_transfer",
                extra={"kind": e.kind.value, "from_account_id": from_account_id,
                       "to_account_id": to_account_id}
            )
            if isinstance(e, InternalError):
                raise
            return Result.failure(e)

        log_action(
            self.logger, "info", "Transfer completed",
            user_id=requester_id, action="execute_transfer", resource=f"transfer:{transfer.id}",
            extra={"amount": str(transfer.amount), "currency": transfer.currency.code,
                   "idempotency_key": transfer.idempotency_key}
        )
        return Result.success(transfer)

    def _execute(self, requester_id: str, from_account_id: str, to_account_id: str,
                 amount: Any, currency_code: str, description: Optional[str],
                 key: Optional[str]) -> Transfer:
        source = self.accounts.get(from_account_id)
        self._check_source(source, requester_id)

        destination = self.accounts.get(to_account_id)
        self._check_destination(destination)

        if from_account_id == to_account_id:
            raise ValidationError("Cannot transfer to the same account")

        currency = Currency.from_code(currency_code)
        if currency != source.currency:
            raise CurrencyMismatchError(source.currency.code, currency.code)

        value = parse_amount(amount, currency)
        if value <= 0:
            raise ValidationError("Transfer amount must be positive")
        self._check_funds(source, value)

        now = datetime.now(timezone.utc)
        transfer = Transfer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=value,
            currency=currency,
            description=description or f"Transfer to {destination.account_number}",
            status=TransferStatus.PENDING,
            initiated_by=requester_id,
            idempotency_key=key,
            idempotency_scope=IdempotencyGuard.scope(requester_id, key)
        )

        try:
            with self.storage.atomic():
                self.storage.insert(self.table_name, transfer.id, transfer.to_dict())

                # Lock in id order so two opposite transfers cannot deadlock
                locked = {}
                for account_id in sorted((from_account_id, to_account_id)):
                    locked[account_id] = self.accounts.get_for_update(account_id)
                source = locked[from_account_id]
                destination = locked[to_account_id]
                self._check_source(source, requester_id)
                self._check_destination(destination)
                self._check_funds(source, value)

                # Stamped under the row locks so entry time follows commit order
                posted_at = datetime.now(timezone.utc)
                self.ledger.debit(
                    source, value, currency,
                    description=transfer.description,
                    counterparty=destination.account_number,
                    transfer_id=transfer.id,
                    now=posted_at
                )
                self.ledger.credit(
                    destination, value, currency,
                    description=description or f"Transfer from {source.account_number}",
                    counterparty=source.account_number,
                    transfer_id=transfer.id,
                    now=posted_at
                )

                transfer.status = TransferStatus.COMPLETED
                transfer.updated_at = posted_at
                self.storage.save(self.table_name, transfer.id, transfer.to_dict())

                self.audit_trail.log_event(
                    event_type=AuditEventType.TRANSFER_COMPLETED,
                    entity_type="transfer",
                    entity_id=transfer.id,
                    user_id=requester_id,
                    metadata={
                        "from_account_id": from_account_id,
                        "to_account_id": to_account_id,
                        "amount": str(value),
                        "currency": currency.code,
                        "source_balance_after": str(source.balance),
                        "destination_balance_after": str(destination.balance)
                    }
                )
        except BankingError:
            raise
        except UniqueConstraintError as e:
            if key is not None and e.table == self.table_name:
                raise ConflictError("Duplicate idempotency key") from e
            raise InternalError("Transfer could not be recorded") from e
        except Exception as e:
            self.logger.exception("Transfer %s rolled back", transfer.id)
            raise InternalError("Transfer could not be completed") from e

        transfer.from_account = AccountSummary.of(source)
        transfer.to_account = AccountSummary.of(destination)
        return transfer

    def _check_source(self, source: Optional[Account], requester_id: str) -> None:
        if not source or source.owner_id != requester_id or not source.is_active:
            raise SourceAccountUnavailableError()

    def _check_destination(self, destination: Optional[Account]) -> None:
        if not destination or not destination.is_active:
            raise NotFoundError("Destination account")

    def _check_funds(self, source: Account, amount: Decimal) -> None:
        if Money(source.balance, source.currency) < Money(amount, source.currency):
            raise InsufficientFundsError(str(source.balance), str(amount))

    def _replay(self, transfer: Transfer, requester_id: str) -> Transfer:
        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSFER_REPLAYED,
            entity_type="transfer",
            entity_id=transfer.id,
            user_id=requester_id,
            metadata={"idempotency_key": transfer.idempotency_key}
        )
        log_action(
            self.logger, "info", "Idempotent transfer replayed",
            user_id=requester_id, action="execute_transfer", resource=f"transfer:{transfer.id}",
            extra={"idempotency_key": transfer.idempotency_key}
        )
        return self._attach_accounts(transfer)

    def _attach_accounts(self, transfer: Transfer) -> Transfer:
        source = self.accounts.get(transfer.from_account_id)
        destination = self.accounts.get(transfer.to_account_id)
        transfer.from_account = AccountSummary.of(source) if source else None
        transfer.to_account = AccountSummary.of(destination) if destination else None
        return transfer

    # Queries

    def _load(self, transfer_id: str) -> Optional[Transfer]:
        data = self.storage.load(self.table_name, transfer_id)
        return Transfer.from_dict(data) if data else None

    def get_transfer(self, transfer_id: str, requester_id: str) -> Result[Transfer]:
        """Visible only to the owner of the source or destination account"""
        transfer = self._load(transfer_id)
        if transfer:
            self._attach_accounts(transfer)
            owners = {s.owner_id for s in (transfer.from_account, transfer.to_account) if s}
            if requester_id in owners:
                return Result.success(transfer)
        return Result.failure(NotFoundError("Transfer"))

    def list_transfers(
        self,
        requester_id: str,
        status: Optional[TransferStatus] = None,
        direction: TransferDirection = TransferDirection.ALL,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 25
    ) -> Result[Tuple[List[Transfer], PaginationMeta]]:
        """
        Transfers touching the requester's accounts, newest first.

        Outgoing means the requester owns the source account, incoming means
        they own the destination. ALL is the union of both.
        """
        owned = [a.id for a in self.accounts.find_by_owner(requester_id)]

        found: Dict[str, Transfer] = {}
        for account_id in owned:
            if direction in (TransferDirection.OUTGOING, TransferDirection.ALL):
                for data in self.storage.find(self.table_name, {"from_account_id": account_id}):
                    found[data['id']] = Transfer.from_dict(data)
            if direction in (TransferDirection.INCOMING, TransferDirection.ALL):
                for data in self.storage.find(self.table_name, {"to_account_id": account_id}):
                    found[data['id']] = Transfer.from_dict(data)

        transfers = list(found.values())
        if status:
            transfers = [t for t in transfers if t.status == status]
        if start_date:
            transfers = [t for t in transfers if t.created_at >= start_date]
        if end_date:
            transfers = [t for t in transfers if t.created_at <= end_date]
        transfers.sort(key=lambda t: t.created_at, reverse=True)

        try:
            page_items, meta = paginate(transfers, page, limit, self.max_page_size)
        except ValidationError as e:
            return Result.failure(e)
        return Result.success(([self._attach_accounts(t) for t in page_items], meta))

    # Cancellation

    def cancel_transfer(self, transfer_id: str, requester_id: str) -> Result[Transfer]:
        """
        Cancel a PENDING transfer. Only the owner of the source account may cancel.
        """
        try:
            with self.storage.atomic():
                data = self.storage.load_for_update(self.table_name, transfer_id)
                transfer = Transfer.from_dict(data) if data else None
                source = self.accounts.get(transfer.from_account_id) if transfer else None
                if not transfer or not source or source.owner_id != requester_id:
                    raise NotFoundError("Transfer")
                if transfer.status != TransferStatus.PENDING:
                    raise ValidationError("Only pending transfers can be cancelled")

                transfer.status = TransferStatus.CANCELLED
                transfer.updated_at = datetime.now(timezone.utc)
                self.storage.save(self.table_name, transfer.id, transfer.to_dict())

                self.audit_trail.log_event(
                    event_type=AuditEventType.TRANSFER_CANCELLED,
                    entity_type="transfer",
                    entity_id=transfer.id,
                    user_id=requester_id,
                    metadata={"amount": str(transfer.amount), "currency": transfer.currency.code}
                )
        except BankingError as e:
            return Result.failure(e)
        except Exception as e:
            self.logger.exception("Cancelling transfer %s failed", transfer_id)
            raise InternalError("Transfer could not be cancelled") from e

        log_action(
            self.logger, "info", "Transfer cancelled",
            user_id=requester_id, action="cancel_transfer", resource=f"transfer:{transfer.id}"
        )
        return Result.success(self._attach_accounts(transfer))

"""
Account Statement Module

Period statements derived from the ledger: opening and closing balances,
debit and credit totals, and the entry count for [period_start, period_end].
One statement exists per account and period; asking again returns it.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import math
import uuid

from .accounts import AccountRepository
from .audit import AuditTrail, AuditEventType
from .currency import Currency
from .errors import NotFoundError, ValidationError
from .ledger import EntryType, LedgerWriter
from .pagination import PaginationMeta, paginate
from .storage import StorageInterface, StorageRecord, UniqueConstraintError, parse_datetime
from .logging_config import get_logger, log_action


@dataclass
class Statement(StorageRecord):
    account_id: str
    period_start: datetime
    period_end: datetime
    opening_balance: Decimal
    closing_balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    entry_count: int
    currency: Currency
    period_key: str

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    def to_response(self) -> Dict[str, Any]:
        result = self.to_dict()
        result.pop('period_key')
        result.pop('updated_at')
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Statement':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            account_id=data['account_id'],
            period_start=parse_datetime(data['period_start']),
            period_end=parse_datetime(data['period_end']),
            opening_balance=Decimal(data['opening_balance']),
            closing_balance=Decimal(data['closing_balance']),
            total_credits=Decimal(data['total_credits']),
            total_debits=Decimal(data['total_debits']),
            entry_count=data['entry_count'],
            currency=Currency[data['currency']],
            period_key=data['period_key']
        )


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class StatementService:
    """
    Generates and retrieves account statements
    """

    table_name = "statements"

    def __init__(self, storage: StorageInterface, accounts: AccountRepository,
                 ledger: LedgerWriter, audit_trail: AuditTrail,
                 max_days: int = 365, max_page_size: int = 100):
        self.storage = storage
        self.accounts = accounts
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.max_days = max_days
        self.max_page_size = max_page_size
        self.logger = get_logger("banking_ledger.statements")
        self.storage.create_unique_index(self.table_name, "period_key")

    def _owned_account(self, account_id: str, requester_id: str):
        account = self.accounts.get(account_id)
        if not account or account.owner_id != requester_id:
            raise NotFoundError("Account")
        return account

    def _find_period(self, period_key: str) -> Optional[Statement]:
        rows = self.storage.find(self.table_name, {"period_key": period_key})
        return Statement.from_dict(rows[0]) if rows else None

    def generate_statement(self, account_id: str, requester_id: str,
                           start_date: datetime, end_date: datetime) -> Statement:
        """
        Generate (or return the existing) statement for a period.

        Raises:
            NotFoundError: Account missing or not owned by requester
            ValidationError: start_date not before end_date, or period too long
        """
        account = self._owned_account(account_id, requester_id)

        start = _as_utc(start_date)
        end = _as_utc(end_date)
        if start >= end:
            raise ValidationError("Start date must be before end date")
        if math.ceil((end - start).total_seconds() / 86400) > self.max_days:
            raise ValidationError(f"Statement period cannot exceed {self.max_days} days")

        period_key = f"{account_id}:{start.isoformat()}:{end.isoformat()}"
        existing = self._find_period(period_key)
        if existing:
            return existing

        all_entries = self.ledger.entries_for_account(account_id)
        entries = [e for e in all_entries if start <= e.created_at <= end]
        quantum = account.currency.quantum
        zero = Decimal('0').quantize(quantum)

        if entries:
            opening = entries[0].balance_before
            closing = entries[-1].balance_after
        else:
            earlier = [e for e in all_entries if e.created_at < start]
            opening = earlier[-1].balance_after if earlier else zero
            closing = opening

        now = datetime.now(timezone.utc)
        statement = Statement(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            period_start=start,
            period_end=end,
            opening_balance=opening,
            closing_balance=closing,
            total_credits=sum((e.amount for e in entries if e.entry_type == EntryType.CREDIT), zero),
            total_debits=sum((e.amount for e in entries if e.entry_type == EntryType.DEBIT), zero),
            entry_count=len(entries),
            currency=account.currency,
            period_key=period_key
        )

        try:
            with self.storage.atomic():
                self.storage.insert(self.table_name, statement.id, statement.to_dict())
                self.audit_trail.log_event(
                    event_type=AuditEventType.STATEMENT_GENERATED,
                    entity_type="statement",
                    entity_id=statement.id,
                    user_id=requester_id,
                    metadata={"account_id": account_id, "period_start": start.isoformat(),
                              "period_end": end.isoformat(), "entry_count": len(entries)}
                )
        except UniqueConstraintError:
            # Generated concurrently for the same period
            return self._find_period(period_key)

        log_action(
            self.logger, "info", "Statement generated",
            user_id=requester_id, action="generate_statement", resource=f"statement:{statement.id}",
            extra={"account_id": account_id, "entry_count": len(entries)}
        )
        return statement

    def get_statement(self, statement_id: str, requester_id: str) -> Statement:
        data = self.storage.load(self.table_name, statement_id)
        if data:
            statement = Statement.from_dict(data)
            account = self.accounts.get(statement.account_id)
            if account and account.owner_id == requester_id:
                return statement
        raise NotFoundError("Statement")

    def list_statements(self, account_id: str, requester_id: str, year: Optional[int] = None,
                        page: int = 1, limit: int = 10) -> Tuple[List[Statement], PaginationMeta]:
        """Statements for an owned account, newest period first"""
        self._owned_account(account_id, requester_id)
        statements = [
            Statement.from_dict(d)
            for d in self.storage.find(self.table_name, {"account_id": account_id})
        ]
        if year is not None:
            statements = [s for s in statements if s.period_start.year == year]
        statements.sort(key=lambda s: s.period_start, reverse=True)
        return paginate(statements, page, limit, self.max_page_size)

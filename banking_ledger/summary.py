"""
Transaction Summary Module

Read-only aggregation over an account's ledger entries for a trailing
window of days. Sums are exact Decimal; an empty window yields zeros.
"""

from decimal import Decimal, ROUND_HALF_EVEN
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .accounts import AccountRepository
from .errors import BankingError, NotFoundError, Result, ValidationError
from .ledger import EntryType, LedgerEntry, LedgerWriter


@dataclass(frozen=True)
class TransactionSummary:
    account_id: str
    currency: str
    start_date: datetime
    end_date: datetime
    days: int
    total_transactions: int
    total_debits: Decimal
    total_credits: Decimal
    net_change: Decimal
    debit_count: int
    credit_count: int
    average_debit_amount: Decimal
    average_credit_amount: Decimal
    largest_debit: Decimal
    largest_credit: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "currency": self.currency,
            "period": {
                "start_date": self.start_date.isoformat(),
                "end_date": self.end_date.isoformat(),
                "days": self.days,
            },
            "total_transactions": self.total_transactions,
            "total_debits": str(self.total_debits),
            "total_credits": str(self.total_credits),
            "net_change": str(self.net_change),
            "debit_count": self.debit_count,
            "credit_count": self.credit_count,
            "average_debit_amount": str(self.average_debit_amount),
            "average_credit_amount": str(self.average_credit_amount),
            "largest_debit": str(self.largest_debit),
            "largest_credit": str(self.largest_credit),
        }


def _average(amounts: List[Decimal], quantum: Decimal) -> Decimal:
    if not amounts:
        return Decimal('0').quantize(quantum)
    return (sum(amounts, Decimal('0')) / len(amounts)).quantize(quantum, rounding=ROUND_HALF_EVEN)


class TransactionSummaryAggregator:
    """Computes per-account activity statistics"""

    def __init__(self, accounts: AccountRepository, ledger: LedgerWriter,
                 default_days: int = 30, max_days: int = 365):
        self.accounts = accounts
        self.ledger = ledger
        self.default_days = default_days
        self.max_days = max_days

    def summarize(self, account_id: str, requester_id: str, days: Optional[int] = None,
                  now: Optional[datetime] = None) -> Result[TransactionSummary]:
        """
        Summarize the account's entries created in the last ``days`` days.

        Returns:
            Result with a TransactionSummary, NOT_FOUND for a missing or
            foreign account, VALIDATION for a window outside 1..max_days
        """
        try:
            return Result.success(self._summarize(account_id, requester_id, days, now))
        except BankingError as e:
            return Result.failure(e)

    def _summarize(self, account_id: str, requester_id: str, days: Optional[int],
                   now: Optional[datetime]) -> TransactionSummary:
        days = self.default_days if days is None else days
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= self.max_days:
            raise ValidationError(f"days must be between 1 and {self.max_days}")

        account = self.accounts.get(account_id)
        if not account or account.owner_id != requester_id:
            raise NotFoundError("Account")

        end_date = now or datetime.now(timezone.utc)
        start_date = end_date - timedelta(days=days)
        entries: List[LedgerEntry] = self.ledger.entries_for_account(account_id, start_date, end_date)

        debits = [e.amount for e in entries if e.entry_type == EntryType.DEBIT]
        credits = [e.amount for e in entries if e.entry_type == EntryType.CREDIT]
        quantum = account.currency.quantum
        zero = Decimal('0').quantize(quantum)
        total_debits = sum(debits, zero)
        total_credits = sum(credits, zero)

        return TransactionSummary(
            account_id=account_id,
            currency=account.currency.code,
            start_date=start_date,
            end_date=end_date,
            days=days,
            total_transactions=len(entries),
            total_debits=total_debits,
            total_credits=total_credits,
            net_change=total_credits - total_debits,
            debit_count=len(debits),
            credit_count=len(credits),
            average_debit_amount=_average(debits, quantum),
            average_credit_amount=_average(credits, quantum),
            largest_debit=max(debits, default=zero),
            largest_credit=max(credits, default=zero),
        )

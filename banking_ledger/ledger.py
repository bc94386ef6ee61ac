"""
Transaction Ledger Module

Immutable DEBIT/CREDIT ledger entries with balance-after snapshots.
Appending an entry and mutating the account balance happen together in a
single atomic unit, which keeps two invariants true at every commit:

- an account's stored balance equals the signed sum of its entries
- each entry's balance_after equals the previous entry's balance_after
  plus or minus its own amount, in per-account sequence order
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import uuid

from .accounts import Account, AccountRepository
from .currency import Currency
from .storage import StorageInterface, StorageRecord, parse_datetime
from .errors import NotFoundError
from .pagination import PaginationMeta, paginate


class EntryType(Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


@dataclass
class LedgerEntry(StorageRecord):
    """
    One debit or credit against one account. Never updated once written.
    """
    account_id: str
    entry_type: EntryType
    amount: Decimal
    currency: Currency
    description: str
    balance_after: Decimal
    sequence: int
    counterparty: Optional[str] = None
    transfer_id: Optional[str] = None

    @property
    def signed_amount(self) -> Decimal:
        """Credits increase the balance, debits decrease it"""
        return self.amount if self.entry_type == EntryType.CREDIT else -self.amount

    @property
    def balance_before(self) -> Decimal:
        return self.balance_after - self.signed_amount

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerEntry':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            account_id=data['account_id'],
            entry_type=EntryType(data['entry_type']),
            amount=Decimal(data['amount']),
            currency=Currency[data['currency']],
            description=data['description'],
            balance_after=Decimal(data['balance_after']),
            sequence=data['sequence'],
            counterparty=data.get('counterparty'),
            transfer_id=data.get('transfer_id')
        )


@dataclass
class LedgerVerification:
    """Outcome of replaying one account's ledger"""
    account_id: str
    entry_count: int
    replayed_balance: Decimal
    stored_balance: Decimal
    breaks: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.breaks and self.replayed_balance == self.stored_balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "valid": self.valid,
            "entry_count": self.entry_count,
            "replayed_balance": str(self.replayed_balance),
            "stored_balance": str(self.stored_balance),
            "breaks": self.breaks,
        }


class LedgerWriter:
    """
    Appends ledger entries and answers ledger queries
    """

    table_name = "transactions"

    def __init__(self, storage: StorageInterface, accounts: AccountRepository, max_page_size: int = 100):
        self.storage = storage
        self.accounts = accounts
        self.max_page_size = max_page_size

    def append(
        self,
        account: Account,
        entry_type: EntryType,
        amount: Decimal,
        currency: Currency,
        description: str,
        counterparty: Optional[str] = None,
        transfer_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> LedgerEntry:
        """
        Append one entry and apply it to the account balance.

        ``account`` must be the row as read inside the caller's transaction
        (ideally via ``get_for_update``); it is mutated in place and saved.
        The entry is never stamped earlier than the account's previous entry,
        so creation-time order and sequence order agree.

        Returns:
            The stored LedgerEntry
        """
        if amount <= 0:
            raise ValueError("Ledger entry amount must be positive")

        now = now or datetime.now(timezone.utc)
        if account.last_entry_at and now < account.last_entry_at:
            now = account.last_entry_at
        signed = amount if entry_type == EntryType.CREDIT else -amount

        with self.storage.atomic():
            account.balance = account.balance + signed
            account.last_entry_sequence += 1
            account.last_entry_at = now
            account.updated_at = now

            entry = LedgerEntry(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_id=account.id,
                entry_type=entry_type,
                amount=amount,
                currency=currency,
                description=description,
                balance_after=account.balance,
                sequence=account.last_entry_sequence,
                counterparty=counterparty,
                transfer_id=transfer_id
            )
            self.storage.insert(self.table_name, entry.id, entry.to_dict())
            self.accounts.save(account)

        return entry

    def debit(self, account: Account, amount: Decimal, currency: Currency, description: str,
              **kwargs) -> LedgerEntry:
        return self.append(account, EntryType.DEBIT, amount, currency, description, **kwargs)

    def credit(self, account: Account, amount: Decimal, currency: Currency, description: str,
               **kwargs) -> LedgerEntry:
        return self.append(account, EntryType.CREDIT, amount, currency, description, **kwargs)

    def get_entry(self, entry_id: str, requester_id: str) -> LedgerEntry:
        """Get an entry; only the owner of its account can see it"""
        data = self.storage.load(self.table_name, entry_id)
        if data:
            entry = LedgerEntry.from_dict(data)
            account = self.accounts.get(entry.account_id)
            if account and account.owner_id == requester_id:
                return entry
        raise NotFoundError("Transaction")

    def entries_for_account(
        self,
        account_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> List[LedgerEntry]:
        """Entries for one account in sequence order, optionally bounded (inclusive)"""
        entries = [
            LedgerEntry.from_dict(d)
            for d in self.storage.find(self.table_name, {"account_id": account_id})
        ]
        if start_date:
            entries = [e for e in entries if e.created_at >= start_date]
        if end_date:
            entries = [e for e in entries if e.created_at <= end_date]
        entries.sort(key=lambda e: e.sequence)
        return entries

    def entries_for_transfer(self, transfer_id: str) -> List[LedgerEntry]:
        entries = [
            LedgerEntry.from_dict(d)
            for d in self.storage.find(self.table_name, {"transfer_id": transfer_id})
        ]
        entries.sort(key=lambda e: (e.entry_type != EntryType.DEBIT, e.created_at))
        return entries

    def list_entries(
        self,
        account_id: str,
        requester_id: str,
        entry_type: Optional[EntryType] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 25
    ) -> Tuple[List[LedgerEntry], PaginationMeta]:
        """
        Owner-scoped, filtered, newest-first page of an account's entries

        Raises:
            NotFoundError: Account missing or not owned by requester
        """
        account = self.accounts.get(account_id)
        if not account or account.owner_id != requester_id:
            raise NotFoundError("Account")

        entries = self.entries_for_account(account_id, start_date, end_date)
        if entry_type:
            entries = [e for e in entries if e.entry_type == entry_type]
        if search:
            needle = search.lower()
            entries = [
                e for e in entries
                if needle in e.description.lower() or needle in (e.counterparty or "").lower()
            ]
        entries.reverse()
        return paginate(entries, page, limit, self.max_page_size)

    def verify_account(self, account_id: str) -> LedgerVerification:
        """
        Replay an account's ledger from zero and compare against the stored balance.

        Raises:
            NotFoundError: Account does not exist
        """
        account = self.accounts.get(account_id)
        if not account:
            raise NotFoundError("Account")

        running = Decimal('0')
        breaks = []
        entries = self.entries_for_account(account_id)
        for entry in entries:
            running += entry.signed_amount
            if entry.balance_after != running:
                breaks.append({
                    "entry_id": entry.id,
                    "sequence": entry.sequence,
                    "expected_balance_after": str(running),
                    "recorded_balance_after": str(entry.balance_after),
                })

        return LedgerVerification(
            account_id=account_id,
            entry_count=len(entries),
            replayed_balance=running,
            stored_balance=account.balance,
            breaks=breaks
        )

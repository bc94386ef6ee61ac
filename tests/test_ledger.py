"""
Test suite for the transaction ledger

Validates balance-after snapshots, per-account sequencing, owner-scoped
queries and ledger replay verification.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from banking_ledger.accounts import AccountType
from banking_ledger.config import LedgerConfig
from banking_ledger.currency import Currency
from banking_ledger.errors import NotFoundError
from banking_ledger.ledger import EntryType, LedgerEntry
from banking_ledger.storage import InMemoryStorage
from banking_ledger.system import BankingSystem


class TestLedgerWriter:
    """Test appending entries"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.system = BankingSystem(storage=self.storage, config=LedgerConfig(database_url="memory://"))
        self.ledger = self.system.ledger
        self.account = self.system.account_manager.create_account(
            "user-1", AccountType.CHECKING, "USD", "100.00"
        )

    def test_debit_and_credit_update_balance(self):
        with self.storage.atomic():
            account = self.system.account_repository.get_for_update(self.account.id)
            debit = self.ledger.debit(account, Decimal("30.00"), Currency.USD, "Coffee")
            credit = self.ledger.credit(account, Decimal("5.00"), Currency.USD, "Refund",
                                        counterparty="1000999999999")

        assert debit.balance_after == Decimal("70.00")
        assert debit.sequence == 2
        assert credit.balance_after == Decimal("75.00")
        assert credit.sequence == 3
        assert credit.counterparty == "1000999999999"

        stored = self.system.account_repository.get(self.account.id)
        assert stored.balance == Decimal("75.00")
        assert stored.last_entry_sequence == 3

    def test_entry_never_stamped_before_previous_entry(self):
        repository = self.system.account_repository
        deposit = self.ledger.entries_for_account(self.account.id)[0]
        earlier = deposit.created_at - timedelta(minutes=5)

        entry = self.ledger.debit(repository.get(self.account.id), Decimal("10.00"),
                                  Currency.USD, "Stale clock", now=earlier)

        assert entry.created_at == deposit.created_at
        assert entry.sequence == 2
        assert repository.get(self.account.id).last_entry_at == deposit.created_at

    def test_non_positive_amount_rejected(self):
        account = self.system.account_repository.get(self.account.id)
        with pytest.raises(ValueError):
            self.ledger.debit(account, Decimal("0"), Currency.USD, "Nothing")

    def test_append_rolls_back_with_caller(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                account = self.system.account_repository.get_for_update(self.account.id)
                self.ledger.debit(account, Decimal("10.00"), Currency.USD, "Rolled back")
                raise RuntimeError("caller failed")

        assert self.system.account_repository.get(self.account.id).balance == Decimal("100.00")
        assert len(self.ledger.entries_for_account(self.account.id)) == 1

    def test_entry_round_trips_through_storage(self):
        account = self.system.account_repository.get(self.account.id)
        entry = self.ledger.debit(account, Decimal("1.25"), Currency.USD, "Fee", transfer_id="t-1")

        loaded = LedgerEntry.from_dict(self.storage.load("transactions", entry.id))
        assert loaded == entry
        assert loaded.signed_amount == Decimal("-1.25")
        assert loaded.balance_before == Decimal("100.00")


class TestLedgerQueries:
    """Test owner-scoped ledger queries"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.system = BankingSystem(storage=self.storage, config=LedgerConfig(database_url="memory://"))
        self.ledger = self.system.ledger
        self.account = self.system.account_manager.create_account(
            "user-1", AccountType.CHECKING, "USD", "500.00"
        )
        account = self.system.account_repository.get(self.account.id)
        self.ledger.debit(account, Decimal("20.00"), Currency.USD, "Grocery store")
        self.ledger.debit(account, Decimal("45.00"), Currency.USD, "Electric bill",
                          counterparty="1000555555555")
        self.ledger.credit(account, Decimal("1000.00"), Currency.USD, "Salary")

    def test_get_entry_owner_only(self):
        entry = self.ledger.entries_for_account(self.account.id)[0]
        assert self.ledger.get_entry(entry.id, "user-1").id == entry.id
        with pytest.raises(NotFoundError, match="Transaction not found"):
            self.ledger.get_entry(entry.id, "user-2")
        with pytest.raises(NotFoundError):
            self.ledger.get_entry("missing", "user-1")

    def test_list_entries_newest_first(self):
        entries, meta = self.ledger.list_entries(self.account.id, "user-1")
        assert [e.sequence for e in entries] == [4, 3, 2, 1]
        assert meta.total == 4

    def test_list_entries_filters_by_type(self):
        entries, _ = self.ledger.list_entries(self.account.id, "user-1", entry_type=EntryType.DEBIT)
        assert {e.description for e in entries} == {"Grocery store", "Electric bill"}

    def test_list_entries_search(self):
        entries, _ = self.ledger.list_entries(self.account.id, "user-1", search="ELECTRIC")
        assert len(entries) == 1
        entries, _ = self.ledger.list_entries(self.account.id, "user-1", search="5555")
        assert entries[0].description == "Electric bill"

    def test_list_entries_date_range(self):
        future = datetime.now(timezone.utc) + timedelta(days=1)
        entries, meta = self.ledger.list_entries(self.account.id, "user-1", start_date=future)
        assert entries == []
        assert meta.total == 0

    def test_list_entries_pagination(self):
        entries, meta = self.ledger.list_entries(self.account.id, "user-1", page=2, limit=3)
        assert len(entries) == 1
        assert meta.has_prev and not meta.has_next

    def test_list_entries_not_owner(self):
        with pytest.raises(NotFoundError):
            self.ledger.list_entries(self.account.id, "user-2")

    def test_entries_for_transfer(self):
        account = self.system.account_repository.get(self.account.id)
        self.ledger.debit(account, Decimal("1.00"), Currency.USD, "Leg", transfer_id="t-9")
        entries = self.ledger.entries_for_transfer("t-9")
        assert len(entries) == 1
        assert entries[0].entry_type == EntryType.DEBIT


class TestLedgerReplay:
    """Test ledger replay verification"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.system = BankingSystem(storage=self.storage, config=LedgerConfig(database_url="memory://"))
        self.ledger = self.system.ledger
        self.account = self.system.account_manager.create_account(
            "user-1", AccountType.CHECKING, "USD", "300.00"
        )
        account = self.system.account_repository.get(self.account.id)
        self.ledger.debit(account, Decimal("100.00"), Currency.USD, "Rent")
        self.ledger.credit(account, Decimal("25.50"), Currency.USD, "Cashback")

    def test_replay_matches_stored_balance(self):
        result = self.ledger.verify_account(self.account.id)
        assert result.valid
        assert result.entry_count == 3
        assert result.replayed_balance == Decimal("225.50")
        assert result.stored_balance == Decimal("225.50")
        assert result.breaks == []

    def test_each_snapshot_follows_previous(self):
        entries = self.ledger.entries_for_account(self.account.id)
        assert entries[0].balance_before == Decimal("0")
        for previous, entry in zip(entries, entries[1:]):
            assert entry.balance_after == previous.balance_after + entry.signed_amount

    def test_tampered_snapshot_detected(self):
        entry = self.ledger.entries_for_account(self.account.id)[1]
        data = self.storage.load("transactions", entry.id)
        data["balance_after"] = "999.00"
        self.storage.save("transactions", entry.id, data)

        result = self.ledger.verify_account(self.account.id)
        assert not result.valid
        assert len(result.breaks) == 1
        assert result.breaks[0]["entry_id"] == entry.id
        assert result.breaks[0]["expected_balance_after"] == "200.00"

    def test_balance_mutated_outside_ledger_detected(self):
        data = self.storage.load("accounts", self.account.id)
        data["balance"] = "1000000.00"
        self.storage.save("accounts", self.account.id, data)

        result = self.ledger.verify_account(self.account.id)
        assert not result.valid
        assert result.breaks == []
        assert result.to_dict()["stored_balance"] == "1000000.00"

    def test_verify_missing_account(self):
        with pytest.raises(NotFoundError):
            self.ledger.verify_account("missing")

"""
Test suite for account management

Covers account creation with initial deposits, owner scoping, listing and
the status lifecycle rules.
"""

import pytest
from decimal import Decimal
from unittest.mock import patch

from banking_ledger.accounts import AccountStatus, AccountType
from banking_ledger.audit import AuditEventType
from banking_ledger.config import LedgerConfig
from banking_ledger.currency import Currency
from banking_ledger.errors import NotFoundError, ValidationError
from banking_ledger.ledger import EntryType
from banking_ledger.storage import InMemoryStorage, UniqueConstraintError
from banking_ledger.system import BankingSystem


class TestAccountManager:
    """Test account lifecycle"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.system = BankingSystem(storage=self.storage, config=LedgerConfig(database_url="memory://"))
        self.manager = self.system.account_manager

    def test_create_account_defaults(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING)

        assert account.owner_id == "user-1"
        assert account.currency == Currency.USD
        assert account.balance == Decimal("0")
        assert account.status == AccountStatus.ACTIVE
        assert account.account_number.startswith("1000")
        assert len(account.account_number) == 13
        assert self.system.ledger.entries_for_account(account.id) == []

    def test_initial_deposit_writes_ledger_entry(self):
        account = self.manager.create_account("user-1", AccountType.SAVINGS, "EUR", "1000.00")

        assert account.balance == Decimal("1000.00")
        entries = self.system.ledger.entries_for_account(account.id)
        assert len(entries) == 1
        assert entries[0].entry_type == EntryType.CREDIT
        assert entries[0].description == "Initial deposit"
        assert entries[0].balance_after == Decimal("1000.00")
        assert entries[0].sequence == 1

        stored = self.system.account_repository.get(account.id)
        assert stored.balance == Decimal("1000.00")
        assert stored.last_entry_sequence == 1

    def test_negative_deposit_rejected(self):
        with pytest.raises(ValidationError, match="cannot be negative"):
            self.manager.create_account("user-1", AccountType.CHECKING, "USD", "-1.00")
        assert self.storage.count("accounts") == 0

    def test_out_of_range_deposit_rejected(self):
        with pytest.raises(ValidationError, match="Invalid amount"):
            self.manager.create_account("user-1", AccountType.CHECKING, "USD", "1e30")
        assert self.storage.count("accounts") == 0

    def test_unknown_currency_rejected(self):
        with pytest.raises(ValidationError, match="Unsupported currency"):
            self.manager.create_account("user-1", AccountType.CHECKING, "ABC")

    def test_account_number_collision_retries(self):
        first = self.manager.create_account("user-1", AccountType.CHECKING)
        numbers = iter([first.account_number, "1000123456789"])

        with patch.object(self.manager, "_generate_account_number", side_effect=lambda: next(numbers)):
            second = self.manager.create_account("user-2", AccountType.CHECKING)

        assert second.account_number == "1000123456789"
        assert self.storage.count("accounts") == 2

    def test_account_number_collision_exhausted(self):
        first = self.manager.create_account("user-1", AccountType.CHECKING)

        with patch.object(self.manager, "_generate_account_number", return_value=first.account_number):
            with pytest.raises(ValidationError, match="unique account number"):
                self.manager.create_account("user-2", AccountType.CHECKING, "USD", "50.00")

        # Nothing from the failed attempts survives
        assert self.storage.count("accounts") == 1
        assert self.storage.count("transactions") == 0

    def test_unique_index_enforced_by_repository(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING)
        clone = self.system.account_repository.get(account.id)
        clone.id = "another-id"
        with pytest.raises(UniqueConstraintError):
            self.system.account_repository.insert(clone)

    def test_get_account_owner_scoped(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING)

        assert self.manager.get_account(account.id, "user-1").id == account.id
        with pytest.raises(NotFoundError, match="Account not found"):
            self.manager.get_account(account.id, "user-2")
        with pytest.raises(NotFoundError):
            self.manager.get_account("missing", "user-1")

    def test_list_accounts_filters_and_paginates(self):
        for _ in range(3):
            self.manager.create_account("user-1", AccountType.CHECKING)
        self.manager.create_account("user-1", AccountType.SAVINGS)
        self.manager.create_account("user-2", AccountType.SAVINGS)

        accounts, meta = self.manager.list_accounts("user-1", page=1, limit=3)
        assert len(accounts) == 3
        assert meta.total == 4
        assert meta.total_pages == 2
        assert meta.has_next and not meta.has_prev

        savings, meta = self.manager.list_accounts("user-1", account_type=AccountType.SAVINGS)
        assert len(savings) == 1
        assert meta.total == 1

    def test_list_accounts_rejects_bad_page(self):
        with pytest.raises(ValidationError):
            self.manager.list_accounts("user-1", page=0)
        with pytest.raises(ValidationError):
            self.manager.list_accounts("user-1", limit=101)

    def test_update_status(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING)

        frozen = self.manager.update_status(account.id, "user-1", AccountStatus.FROZEN)
        assert frozen.status == AccountStatus.FROZEN
        assert self.system.account_repository.get(account.id).status == AccountStatus.FROZEN

        events = self.system.audit_trail.get_events_for_entity("account", account.id)
        assert events[-1].event_type == AuditEventType.ACCOUNT_STATUS_CHANGED
        assert events[-1].metadata == {"old_status": "ACTIVE", "new_status": "FROZEN"}

    def test_close_requires_zero_balance(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING, "USD", "10.00")

        with pytest.raises(ValidationError, match="non-zero balance"):
            self.manager.update_status(account.id, "user-1", AccountStatus.CLOSED)
        assert self.system.account_repository.get(account.id).status == AccountStatus.ACTIVE

    def test_closed_is_terminal(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING)
        self.manager.update_status(account.id, "user-1", AccountStatus.CLOSED)

        with pytest.raises(ValidationError, match="cannot be reopened"):
            self.manager.update_status(account.id, "user-1", AccountStatus.ACTIVE)

    def test_update_status_not_owner(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING)
        with pytest.raises(NotFoundError):
            self.manager.update_status(account.id, "user-2", AccountStatus.FROZEN)

    def test_get_balance(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING, "USD", "42.50")
        balance = self.manager.get_balance(account.id, "user-1")
        assert balance == {
            "account_id": account.id,
            "balance": Decimal("42.50"),
            "currency": "USD",
            "status": "ACTIVE",
        }

    def test_creation_is_audited(self):
        account = self.manager.create_account("user-1", AccountType.CHECKING, "USD", "5.00")
        events = self.system.audit_trail.get_events_for_entity("account", account.id)
        assert len(events) == 1
        assert events[0].event_type == AuditEventType.ACCOUNT_CREATED
        assert events[0].metadata["initial_deposit"] == "5.00"

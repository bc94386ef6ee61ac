"""
Test suite for the idempotency guard
"""

import pytest

from banking_ledger.errors import ValidationError
from banking_ledger.idempotency import IdempotencyGuard
from banking_ledger.storage import InMemoryStorage, UniqueConstraintError


class TestIdempotencyGuard:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.guard = IdempotencyGuard(self.storage, "requests", loader=dict, owner_field="owner")

    def store(self, record_id, requester_id, key):
        self.storage.insert("requests", record_id, {
            "id": record_id,
            "owner": requester_id,
            "idempotency_scope": IdempotencyGuard.scope(requester_id, key)
        })

    def test_scope_combines_requester_and_key(self):
        assert IdempotencyGuard.scope("user-1", "abc") == '["user-1","abc"]'
        assert IdempotencyGuard.scope("user-1", None) is None

    def test_scope_is_unambiguous(self):
        assert IdempotencyGuard.scope("alice", "k:1") != IdempotencyGuard.scope("alice:k", "1")
        assert IdempotencyGuard.scope('a","b', "c") != IdempotencyGuard.scope("a", 'b","c')

    def test_validate_key(self):
        assert IdempotencyGuard.validate_key(None) is None
        assert IdempotencyGuard.validate_key("  ") is None
        assert IdempotencyGuard.validate_key(" key-1 ") == "key-1"
        with pytest.raises(ValidationError):
            IdempotencyGuard.validate_key("x" * 256)
        with pytest.raises(ValidationError):
            IdempotencyGuard.validate_key(123)

    def test_find_by_key(self):
        self.store("r1", "user-1", "abc")

        assert self.guard.find_by_key("user-1", "abc")["id"] == "r1"
        assert self.guard.find_by_key("user-2", "abc") is None
        assert self.guard.find_by_key("user-1", "other") is None
        assert self.guard.find_by_key("user-1", None) is None

    def test_find_requires_matching_owner(self):
        self.storage.insert("requests", "r1", {
            "id": "r1", "owner": "someone-else",
            "idempotency_scope": IdempotencyGuard.scope("user-1", "abc")
        })
        assert self.guard.find_by_key("user-1", "abc") is None

    def test_store_rejects_duplicate_scope(self):
        self.store("r1", "user-1", "abc")
        with pytest.raises(UniqueConstraintError):
            self.store("r2", "user-1", "abc")

    def test_requests_without_key_are_not_deduplicated(self):
        self.store("r1", "user-1", None)
        self.store("r2", "user-1", None)
        assert self.storage.count("requests") == 2

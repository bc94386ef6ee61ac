"""
Test suite for audit module

Tests the hash-chained audit trail, tamper detection and the guarantee
that events written inside a rolled-back unit disappear with it.
"""

import pytest
import threading
from datetime import datetime, timezone
from decimal import Decimal

from banking_ledger.storage import InMemoryStorage
from banking_ledger.audit import AuditTrail, AuditEvent, AuditEventType


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_hash_covers_content(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.TRANSFER_COMPLETED,
            entity_type="transfer",
            entity_id="T1",
            sequence=1,
            previous_hash="",
            current_hash="",
            metadata={"amount": "10.00"},
            user_id="USER001"
        )
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.metadata["amount"] = "10000.00"
        assert not event.verify_hash()

    def test_round_trip(self):
        trail = AuditTrail(InMemoryStorage())
        event = trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A1",
                                metadata={"deposit": Decimal("5.00")}, user_id="u1")
        loaded = AuditEvent.from_dict(event.to_dict())
        assert loaded.verify_hash()
        assert loaded.metadata == {"deposit": "5.00"}
        assert loaded.user_id == "u1"


class TestAuditTrail:
    """Test AuditTrail chaining and verification"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_chain_links_events(self):
        first = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A1")
        second = self.audit_trail.log_event(AuditEventType.ACCOUNT_STATUS_CHANGED, "account", "A1")

        assert first.previous_hash == ""
        assert second.previous_hash == first.current_hash
        assert (first.sequence, second.sequence) == (1, 2)

        result = self.audit_trail.verify_integrity()
        assert result == {"valid": True, "total_events": 2, "hash_errors": [], "chain_breaks": []}

    def test_events_for_entity(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A1")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A2")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_STATUS_CHANGED, "account", "A1")

        events = self.audit_trail.get_events_for_entity("account", "A1")
        assert [e.event_type for e in events] == [
            AuditEventType.ACCOUNT_CREATED, AuditEventType.ACCOUNT_STATUS_CHANGED
        ]

    def test_tampering_detected(self):
        event = self.audit_trail.log_event(AuditEventType.TRANSFER_COMPLETED, "transfer", "T1",
                                           metadata={"amount": "10.00"})
        self.audit_trail.log_event(AuditEventType.TRANSFER_COMPLETED, "transfer", "T2")

        data = self.storage.load("audit_events", event.id)
        data["metadata"]["amount"] = "99999.00"
        self.storage.save("audit_events", event.id, data)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert [e["event_id"] for e in result["hash_errors"]] == [event.id]

    def test_deleted_event_breaks_chain(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A1")
        middle = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A2")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A3")

        self.storage.delete("audit_events", middle.id)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_rolled_back_event_disappears(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A1")

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A2")
                raise RuntimeError("enclosing operation failed")

        assert self.storage.count("audit_events") == 1
        nxt = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A3")
        assert nxt.sequence == 2
        assert self.audit_trail.verify_integrity()["valid"]

    def test_disabled_trail_writes_nothing(self):
        trail = AuditTrail(self.storage, enabled=False)
        assert trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A1") is None
        assert self.storage.count("audit_events") == 0

    def test_concurrent_event_logging(self):
        errors = []

        def create_events(start_id: int):
            try:
                for i in range(5):
                    self.audit_trail.log_event(
                        event_type=AuditEventType.TRANSFER_COMPLETED,
                        entity_type="transfer",
                        entity_id=f"T_{start_id}_{i}",
                        metadata={"thread_id": start_id, "sequence": i}
                    )
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create_events, args=(i,)) for i in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 15

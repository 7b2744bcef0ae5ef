"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection, integrity verification,
and rollback of events logged inside a failed unit of work.
"""

from datetime import datetime, timezone

import pytest

from points_economy.audit import AuditTrail, AuditEvent, AuditEventType
from points_economy.storage import InMemoryStorage, SQLiteStorage


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def make_event(self, **overrides):
        now = datetime.now(timezone.utc)
        fields = dict(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            sequence=1,
            event_type=AuditEventType.POINTS_AWARDED,
            entity_type="student",
            entity_id="S1",
            previous_hash="",
            current_hash="",
            metadata={"delta": 50},
            user_id="T1"
        )
        fields.update(overrides)
        return AuditEvent(**fields)

    def test_hash_is_deterministic(self):
        event = self.make_event()
        assert event.calculate_hash() == event.calculate_hash()
        assert len(event.calculate_hash()) == 64

    def test_hash_covers_metadata(self):
        event1 = self.make_event()
        event2 = self.make_event(created_at=event1.created_at, updated_at=event1.updated_at,
                                 metadata={"delta": 51})
        assert event1.calculate_hash() != event2.calculate_hash()

    def test_round_trip_through_storage_dict(self):
        event = self.make_event()
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())
        assert restored.event_type == AuditEventType.POINTS_AWARDED
        assert restored.verify_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_log_first_event(self):
        event = self.audit_trail.log_event(
            AuditEventType.PARTICIPANT_REGISTERED, "participant", "S1",
            {"username": "sam"}, user_id="ADMIN"
        )

        assert event.sequence == 1
        assert event.previous_hash == ""
        assert len(event.current_hash) == 64
        assert event.user_id == "ADMIN"
        assert self.audit_trail.count_events() == 1

    def test_events_are_chained(self):
        event1 = self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1", {"delta": 5})
        event2 = self.audit_trail.log_event(AuditEventType.POINTS_SPENT, "student", "S1", {"delta": -5})
        event3 = self.audit_trail.log_event(AuditEventType.CATALOG_ITEM_CREATED, "catalog_item", "I1")

        assert event2.previous_hash == event1.current_hash
        assert event3.previous_hash == event2.current_hash
        assert [e.sequence for e in (event1, event2, event3)] == [1, 2, 3]

    def test_get_events_for_entity_and_type(self):
        self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1")
        self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S2")
        self.audit_trail.log_event(AuditEventType.POINTS_SPENT, "student", "S1")

        events = self.audit_trail.get_events_for_entity("student", "S1")
        assert [e.event_type for e in events] == [AuditEventType.POINTS_AWARDED, AuditEventType.POINTS_SPENT]
        assert len(self.audit_trail.get_events_by_type(AuditEventType.POINTS_AWARDED)) == 2

    def test_verify_integrity(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", f"S{i}", {"delta": i + 1})

        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_detects_tampered_metadata(self):
        self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1", {"delta": 5})
        event = self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1", {"delta": 10})

        data = self.storage.load("audit_events", event.id)
        data["metadata"]["delta"] = 1000
        self.storage.save("audit_events", event.id, data)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"] == [event.id]

    def test_detects_deleted_event(self):
        self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1")
        middle = self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1")
        last = self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1")

        self.storage.delete("audit_events", middle.id)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["chain_breaks"] == [last.id]

    def test_event_rolls_back_with_unit_of_work(self):
        first = self.audit_trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1")

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit_trail.log_event(AuditEventType.POINTS_SPENT, "student", "S1")
                raise RuntimeError("boom")

        assert self.audit_trail.count_events() == 1
        after = self.audit_trail.log_event(AuditEventType.POINTS_SPENT, "student", "S1")
        assert after.sequence == 2
        assert after.previous_hash == first.current_hash
        assert self.audit_trail.verify_integrity()["valid"]

    def test_disabled_trail_logs_nothing(self):
        trail = AuditTrail(self.storage, enabled=False)
        assert trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1") is None
        assert trail.count_events() == 0

    def test_sqlite_chain(self):
        storage = SQLiteStorage()
        trail = AuditTrail(storage)
        for i in range(3):
            trail.log_event(AuditEventType.POINTS_AWARDED, "student", "S1", {"delta": i + 1})

        assert trail.verify_integrity()["valid"]
        storage.close()

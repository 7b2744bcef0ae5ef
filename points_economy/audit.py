"""
Audit Trail Module

Hash-chained audit log with SHA-256 for tamper detection. Events are written
through the same store as the records they describe, so an event logged
inside a unit of work disappears with it when the unit rolls back.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Ledger events
    POINTS_AWARDED = "points_awarded"
    POINTS_SPENT = "points_spent"

    # Catalog events
    CATALOG_ITEM_CREATED = "catalog_item_created"
    CATALOG_ITEM_RESTOCKED = "catalog_item_restocked"
    CATALOG_ITEM_REPRICED = "catalog_item_repriced"

    # Redemption events
    REDEMPTION_SUBMITTED = "redemption_submitted"
    REDEMPTION_APPROVED = "redemption_approved"
    REDEMPTION_REJECTED = "redemption_rejected"
    REDEMPTION_CANCELLED = "redemption_cancelled"

    # Directory events
    PARTICIPANT_REGISTERED = "participant_registered"
    TUTOR_ASSIGNED = "tutor_assigned"


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    sequence: int
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained audit trail

    When ``enabled`` is false, ``log_event`` is a no-op that returns None.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an event to the chain

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data (JSON-serializable)
            user_id: ID of the principal who caused the change

        Returns:
            Created AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        # The unit of work serializes appends; inside an outer unit this joins it
        with self.storage.atomic():
            # Re-read the tail so a rolled-back event never becomes a predecessor
            events = self._load_events()
            previous = events[-1] if events else None
            now = datetime.now(timezone.utc)

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=(previous.sequence + 1) if previous else 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=previous.current_hash if previous else "",
                current_hash="",
                metadata=json.loads(json.dumps(metadata or {}, default=str)),
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """Get all audit events for one entity, oldest first"""
        events = [
            AuditEvent.from_dict(data)
            for data in self.storage.find(self.table_name, {
                'entity_type': entity_type,
                'entity_id': entity_id
            })
        ]
        events.sort(key=lambda e: e.sequence)
        return events

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self._load_events() if e.event_type == event_type]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every event hash and the continuity of the chain

        Returns:
            Dictionary with ``valid``, ``total_events``, ``hash_errors`` and
            ``chain_breaks``
        """
        result: Dict[str, Any] = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for event in events:
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append(event.id)
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append(event.id)
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)

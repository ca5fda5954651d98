"""
Audit Trail Module

Append-only log of every ledger mutation. Each event carries the SHA-256
hash of its predecessor, so editing or removing a stored event breaks the
chain and is caught by verify_integrity().
"""

import hashlib
import json
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan events
    LOAN_CREATED = "loan_created"
    LOAN_STATUS_CHANGED = "loan_status_changed"
    LOAN_RECOMPUTED = "loan_recomputed"
    SCHEDULE_GENERATED = "schedule_generated"

    # Repayment events
    REPAYMENT_RECORDED = "repayment_recorded"
    REPAYMENT_DELETED = "repayment_deleted"

    # Chit fund events
    CHIT_FUND_CREATED = "chit_fund_created"
    CONTRIBUTION_RECORDED = "contribution_recorded"
    AUCTION_RECORDED = "auction_recorded"

    # Integrity events
    CONSISTENCY_VIOLATION = "consistency_violation"
    AUDIT_INTEGRITY_CHECK = "audit_integrity_check"


def _jsonable(value):
    """Metadata values as they are hashed and stored"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """One immutable entry of the audit chain"""
    event_type: AuditEventType
    entity_type: str    # loan, repayment, chit_fund
    entity_id: str
    previous_hash: str  # "" for the first event
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # Collector or operator

    def __post_init__(self):
        self.metadata = _jsonable(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash itself"""
        payload = json.dumps({
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['event_type'] = self.event_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            previous_hash=data['previous_hash'],
            current_hash=data['current_hash'],
            metadata=data.get('metadata') or {},
            user_id=data.get('user_id')
        )


class AuditTrail:
    """
    Hash-chained audit trail

    Events are stored with a sequence number so the chain order survives
    backends that do not keep insertion order.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._tip = None  # (event id, hash, sequence) of the newest event written

    def _rows(self) -> List[Dict[str, Any]]:
        rows = self.storage.load_all(self.table_name)
        rows.sort(key=lambda row: row.get('sequence', 0))
        return rows

    def _chain_tip(self):
        """Hash and sequence of the newest event, ("", -1) for an empty trail"""
        tip = self._tip
        if (tip is not None
                and self.storage.count(self.table_name) == tip[2] + 1
                and self.storage.exists(self.table_name, tip[0])):
            return tip[1], tip[2]

        # Rolled back or written elsewhere; rebuild from the table
        rows = self._rows()
        if not rows:
            return "", -1
        last = rows[-1]
        return last['current_hash'], last.get('sequence', len(rows) - 1)

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

        Runs inside the caller's transaction when there is one, so an event
        of a rolled back operation never anchors later events.

        Args:
            event_type: Type of audit event
            entity_type: Kind of entity affected
            entity_id: ID of the entity
            metadata: Event-specific details
            user_id: Collector or operator who initiated the action

        Returns:
            The stored AuditEvent, or None when audit logging is disabled
        """
        if not self.enabled:
            return None

        with self.storage.atomic():
            previous_hash, sequence = self._chain_tip()
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=previous_hash,
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            row = event.to_dict()
            row['sequence'] = sequence + 1
            self.storage.save(self.table_name, event.id, row)
            self._tip = (event.id, event.current_hash, sequence + 1)
        return event

    def _events(self) -> List[AuditEvent]:
        return [AuditEvent.from_dict(row) for row in self._rows()]

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Events of one entity, oldest first; limit keeps the most recent"""
        events = [
            e for e in self._events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return events[-limit:] if limit else events

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self._events() if e.event_type == event_type]

    def verify_integrity(self, record_check: bool = False,
                         user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Walk the chain and report altered events and broken links

        Args:
            record_check: Append an AUDIT_INTEGRITY_CHECK event with the outcome
            user_id: Operator requesting the check

        Returns:
            valid flag, event count, hash_errors and chain_breaks
        """
        events = self._events()
        hash_errors = []
        chain_breaks = []

        expected_previous = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': expected_previous,
                    'actual_previous_hash': event.previous_hash
                })
            expected_previous = event.current_hash

        result = {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(events),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks
        }

        if record_check:
            self.log_event(
                event_type=AuditEventType.AUDIT_INTEGRITY_CHECK,
                entity_type="audit_trail",
                entity_id=self.table_name,
                metadata={
                    'valid': result['valid'],
                    'total_events': result['total_events'],
                    'hash_errors': len(hash_errors),
                    'chain_breaks': len(chain_breaks)
                },
                user_id=user_id
            )
        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)

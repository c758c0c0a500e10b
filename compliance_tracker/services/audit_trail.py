"""
Audit trail recorder - append-only, field-level history of a task.

The recorder adds rows to the caller's session and never commits; the
lifecycle controller commits the field changes and their audit rows together.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from compliance_tracker.clock import Clock, utcnow
from compliance_tracker.models.audit import AuditLogEntry
from compliance_tracker.models.enums import AuditAction


@dataclass(frozen=True)
class FieldChange:
    old: Any
    new: Any


def serialize_value(value: Any) -> Optional[str]:
    """Render a field value in the log's single string shape."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class AuditTrail:
    """Writes and reads AuditLogEntry rows."""

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def record(
        self,
        task_id: str,
        actor_id: Optional[str],
        action: AuditAction,
        changes: Optional[Mapping[str, FieldChange]] = None,
        summary: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> List[AuditLogEntry]:
        """
        Append entries for one request.

        UPDATED writes one entry per field whose old and new values differ;
        an empty or all-equal changeset writes nothing. CREATED and COMPLETED
        write a single whole-record entry with the summary as new_value.

        All entries of a call share one timestamp and one batch_id.
        """
        timestamp = self.clock()
        batch_id = batch_id or str(uuid.uuid4())
        entries: List[AuditLogEntry] = []

        if action == AuditAction.UPDATED:
            for field, change in (changes or {}).items():
                if change.old == change.new:
                    continue
                entries.append(AuditLogEntry(
                    task_id=task_id,
                    action=action,
                    field=field,
                    old_value=serialize_value(change.old),
                    new_value=serialize_value(change.new),
                    actor_id=actor_id,
                    timestamp=timestamp,
                    batch_id=batch_id,
                ))
        else:
            entries.append(AuditLogEntry(
                task_id=task_id,
                action=action,
                field=None,
                old_value=None,
                new_value=summary,
                actor_id=actor_id,
                timestamp=timestamp,
                batch_id=batch_id,
            ))

        self.db.add_all(entries)
        return entries

    def history(self, task_id: str) -> List[AuditLogEntry]:
        """Every entry for a task, oldest first. Works for deleted tasks too."""
        return (
            self.db.query(AuditLogEntry)
            .filter(AuditLogEntry.task_id == task_id)
            .order_by(AuditLogEntry.timestamp.asc(), AuditLogEntry.id.asc())
            .all()
        )


def diff_fields(current: Mapping[str, Any], proposed: Mapping[str, Any]) -> Dict[str, FieldChange]:
    """Changes for the keys of proposed whose value differs from current."""
    return {
        field: FieldChange(old=current.get(field), new=value)
        for field, value in proposed.items()
        if current.get(field) != value
    }

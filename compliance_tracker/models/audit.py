"""
Audit log model for the task lifecycle.

This model is the only record of what changed on a task and when. There is
no separate versioning table: history is answered by filtering on task_id
and ordering by timestamp.
"""
from sqlalchemy import Column, DateTime, Enum as SQLEnum, Integer, String, Text

from compliance_tracker.clock import utcnow
from compliance_tracker.database import Base
from compliance_tracker.models.enums import AuditAction


class AuditLogEntry(Base):
    """
    One field-level or lifecycle change to a task.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    - task_id is not a foreign key, so entries outlive the task they describe
    - field is NULL for whole-record actions (CREATED, COMPLETED)
    """
    __tablename__ = "audit_log_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    task_id = Column(String(36), nullable=False, index=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    field = Column(String, nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    actor_id = Column(String, nullable=True)  # Nullable for system events
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    batch_id = Column(String(36), nullable=False, index=True)  # Shared by one request's entries

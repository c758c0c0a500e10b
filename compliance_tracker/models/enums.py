"""Enums for the compliance engine - these define the valid values for states and policies."""
from enum import Enum


class TaskKind(str, Enum):
    """The two record types the lifecycle engine governs."""
    ACCESS_REVIEW = "ACCESS_REVIEW"
    COMPLIANCE_AUDIT = "COMPLIANCE_AUDIT"


class TaskStatus(str, Enum):
    """The four states a Task can be in. COMPLETED and CANCELLED are terminal."""
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


class Cadence(str, Enum):
    """Recurrence interval policy. CUSTOM requires custom_interval_days."""
    QUARTERLY = "QUARTERLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    ANNUAL = "ANNUAL"
    CUSTOM = "CUSTOM"


class AuditAction(str, Enum):
    """Kinds of audit log entries."""
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    COMPLETED = "COMPLETED"


class Role(str, Enum):
    """Actor roles supplied by the identity provider, lowest to highest."""
    VIEWER = "viewer"
    ENGINEER = "engineer"
    MANAGER = "manager"
    ADMIN = "admin"

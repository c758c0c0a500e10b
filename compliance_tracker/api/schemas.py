"""Pydantic schemas for responses."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from compliance_tracker.models.enums import AuditAction, Cadence, TaskKind, TaskStatus


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    kind: TaskKind
    category: Optional[str]
    anchor_date: date
    due_date: date
    cadence: Cadence
    custom_interval_days: Optional[int]
    status: TaskStatus
    assigned_to_id: Optional[str]
    completed_by_id: Optional[str]
    completed_at: Optional[datetime]
    total_accrued_seconds: int
    auto_schedule: bool
    evidence_url: Optional[str]
    notes: Optional[str]
    predecessor_task_id: Optional[str]
    created_at: datetime
    updated_at: datetime


class TimerSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: str
    user_id: str
    start_time: datetime
    end_time: Optional[datetime]
    duration_seconds: Optional[int]


class AuditLogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: str
    action: AuditAction
    field: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    actor_id: Optional[str]
    timestamp: datetime
    batch_id: str


class TaskDetailResponse(TaskResponse):
    """A task with its audit trail and timer sessions, as the detail page shows it."""
    audit_log: List[AuditLogEntryResponse] = []
    timer_sessions: List[TimerSessionResponse] = []


class CompletionResponse(BaseModel):
    task: TaskResponse
    successor: Optional[TaskResponse] = None
    warning: Optional[str] = None


class TimerStopResponse(BaseModel):
    session: TimerSessionResponse
    duration_seconds: int
    total_accrued_seconds: int


class KindStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    overdue: int
    upcoming: int
    in_progress: int
    completed: int
    cancelled: int


class ComplianceStatsResponse(KindStatsResponse):
    by_kind: Dict[str, KindStatsResponse]


class ReminderResponse(BaseModel):
    task: TaskResponse
    overdue: bool


# Error response
class ErrorResponse(BaseModel):
    """Body returned for every typed lifecycle failure."""
    error: str
    message: str
    context: Dict[str, Any] = {}

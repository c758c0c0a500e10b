"""Typed inputs accepted by the lifecycle controller."""
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from compliance_tracker.models.enums import Cadence, TaskKind, TaskStatus


class TaskCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: TaskKind = TaskKind.ACCESS_REVIEW
    category: Optional[str] = None
    anchor_date: date
    due_date: date
    cadence: Cadence
    custom_interval_days: Optional[int] = None
    assigned_to_id: Optional[str] = None
    auto_schedule: bool = True
    evidence_url: Optional[str] = None
    notes: Optional[str] = None


class TaskUpdate(BaseModel):
    """
    The closed set of fields an update may touch.

    Only slots the caller actually supplied are applied (an explicit null
    clears a nullable field). Identity fields and the accrued time total are
    deliberately absent.
    """
    model_config = ConfigDict(extra="forbid")

    category: Optional[str] = None
    anchor_date: Optional[date] = None
    due_date: Optional[date] = None
    cadence: Optional[Cadence] = None
    custom_interval_days: Optional[int] = None
    status: Optional[TaskStatus] = None
    assigned_to_id: Optional[str] = None
    evidence_url: Optional[str] = None
    notes: Optional[str] = None
    auto_schedule: Optional[bool] = None

    def supplied(self) -> dict:
        return self.model_dump(exclude_unset=True)


# Fields that may still be edited once a task is completed or cancelled
ANNOTATION_FIELDS = frozenset({"notes", "evidence_url"})

# Fields that cannot be null on the stored record
REQUIRED_FIELDS = frozenset({"anchor_date", "due_date", "cadence", "status", "auto_schedule"})


class CompletionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    evidence_url: Optional[str] = None
    notes: Optional[str] = None
    auto_schedule: Optional[bool] = None


class TimerStopRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    elapsed_seconds: Optional[int] = Field(None, description="Client-reported duration; overrides wall clock")

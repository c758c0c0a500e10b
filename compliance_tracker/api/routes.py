"""API routes for the compliance task lifecycle."""
from dataclasses import asdict
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from compliance_tracker.api.dependencies import Actor, get_actor, require_manager_access, throttle
from compliance_tracker.api.schemas import (
    AuditLogEntryResponse,
    CompletionResponse,
    ComplianceStatsResponse,
    ErrorResponse,
    ReminderResponse,
    TaskDetailResponse,
    TaskResponse,
    TimerSessionResponse,
    TimerStopResponse,
)
from compliance_tracker.clock import utcnow
from compliance_tracker.config import Settings, get_settings
from compliance_tracker.database import get_db
from compliance_tracker.models.enums import TaskKind, TaskStatus
from compliance_tracker.models.payloads import CompletionRequest, TaskCreate, TaskUpdate, TimerStopRequest
from compliance_tracker.services import reporting
from compliance_tracker.services.state_machine import TaskStateMachine
from compliance_tracker.services.timer import TimerTracker

router = APIRouter(responses={
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
})

general = Depends(throttle("general"))
relaxed = Depends(throttle("relaxed"))


def get_state_machine(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> TaskStateMachine:
    return TaskStateMachine(db, due_grace_days=settings.due_grace_days)


# Task endpoints
@router.post("/clients/{client_id}/tasks", response_model=TaskResponse,
             status_code=status.HTTP_201_CREATED, dependencies=[general])
def create_task(
    client_id: str,
    payload: TaskCreate,
    actor: Actor = Depends(require_manager_access),
    sm: TaskStateMachine = Depends(get_state_machine)
):
    """Schedule a new access review or compliance audit for a client."""
    return sm.create(client_id, payload, actor.id)


@router.get("/clients/{client_id}/tasks", response_model=List[TaskResponse], dependencies=[relaxed])
def list_client_tasks(client_id: str, sm: TaskStateMachine = Depends(get_state_machine)):
    """All tasks for a client, latest anchor date first."""
    return sm.list_tasks(client_id=client_id)


@router.get("/tasks", response_model=List[TaskResponse], dependencies=[relaxed])
def list_tasks(
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    kind: Optional[TaskKind] = None,
    assignee: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    sm: TaskStateMachine = Depends(get_state_machine)
):
    """All tasks across clients. assignee=me narrows to the caller's tasks."""
    assigned_to_id = actor.id if assignee == "me" else assignee
    return sm.list_tasks(status=status_filter, kind=kind, assigned_to_id=assigned_to_id)


@router.get("/tasks/{task_id}", response_model=TaskDetailResponse, dependencies=[relaxed])
def get_task(task_id: str, sm: TaskStateMachine = Depends(get_state_machine)):
    """A task with its audit trail and timer sessions."""
    task = sm.get(task_id)
    detail = TaskDetailResponse.model_validate(task)
    detail.audit_log = [AuditLogEntryResponse.model_validate(e) for e in sm.history(task_id)]
    return detail


@router.patch("/tasks/{task_id}", response_model=TaskResponse, dependencies=[general])
def update_task(
    task_id: str,
    changes: TaskUpdate,
    actor: Actor = Depends(require_manager_access),
    sm: TaskStateMachine = Depends(get_state_machine)
):
    """
    Update the supplied fields.

    Completed and cancelled tasks only accept notes and evidence_url.
    """
    return sm.update(task_id, changes, actor.id)


@router.post("/tasks/{task_id}/complete", response_model=CompletionResponse, dependencies=[general])
def complete_task(
    task_id: str,
    body: Optional[CompletionRequest] = None,
    actor: Actor = Depends(require_manager_access),
    sm: TaskStateMachine = Depends(get_state_machine)
):
    """
    Mark a task as completed.

    If auto-scheduling is on, the response carries the next occurrence.
    If the next occurrence could not be created, the completion still
    stands and `warning` explains what went wrong.
    """
    result = sm.complete(task_id, actor.id, body)
    return CompletionResponse(
        task=TaskResponse.model_validate(result.task),
        successor=TaskResponse.model_validate(result.successor) if result.successor else None,
        warning=result.warning,
    )


@router.delete("/tasks/{task_id}", dependencies=[general])
def delete_task(
    task_id: str,
    actor: Actor = Depends(require_manager_access),
    sm: TaskStateMachine = Depends(get_state_machine)
):
    """Delete a task and its timer sessions. Its audit trail is kept."""
    sm.delete(task_id)
    return {"success": True}


@router.get("/tasks/{task_id}/audit-log", response_model=List[AuditLogEntryResponse], dependencies=[relaxed])
def get_audit_log(task_id: str, sm: TaskStateMachine = Depends(get_state_machine)):
    """Audit entries for a task, oldest first. Still answers after the task is deleted."""
    return sm.history(task_id)


@router.get("/tasks/{task_id}/chain", response_model=List[TaskResponse], dependencies=[relaxed])
def get_successor_chain(task_id: str, sm: TaskStateMachine = Depends(get_state_machine)):
    """The task followed by each occurrence auto-scheduled after it."""
    return sm.successor_chain(task_id)


# Timer endpoints
@router.post("/tasks/{task_id}/timer/start", response_model=TimerSessionResponse, dependencies=[general])
def start_timer(task_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    """Start tracking time. Retrying returns the session already running."""
    return TimerTracker(db).start_session(task_id, actor.id)


@router.post("/tasks/{task_id}/timer/stop", response_model=TimerStopResponse, dependencies=[general])
def stop_timer(
    task_id: str,
    body: Optional[TimerStopRequest] = None,
    db: Session = Depends(get_db)
):
    """Stop the running timer and add its duration to the task total."""
    elapsed = body.elapsed_seconds if body else None
    result = TimerTracker(db).stop_session(task_id, elapsed_seconds=elapsed)
    return TimerStopResponse(
        session=TimerSessionResponse.model_validate(result.session),
        duration_seconds=result.duration_seconds,
        total_accrued_seconds=result.new_total,
    )


# Reporting endpoints
@router.get("/compliance/stats", response_model=ComplianceStatsResponse, dependencies=[relaxed])
def get_compliance_stats(
    client_id: Optional[List[str]] = Query(None),
    db: Session = Depends(get_db)
):
    """Overdue, upcoming and completed counts, overall and per kind."""
    stats = reporting.compliance_stats(db, utcnow().date(), client_ids=client_id)
    return ComplianceStatsResponse(**asdict(stats))


@router.get("/compliance/reminders", response_model=List[ReminderResponse], dependencies=[relaxed])
def get_reminders(
    window_days: int = Query(7, ge=0),
    db: Session = Depends(get_db)
):
    """Open tasks that are overdue or due within window_days."""
    today: date = utcnow().date()
    return [
        ReminderResponse(task=TaskResponse.model_validate(task), overdue=reporting.is_overdue(task, today))
        for task in reporting.reminder_candidates(db, today, window_days)
    ]

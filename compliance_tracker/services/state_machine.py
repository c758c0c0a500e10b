"""
State machine that governs the compliance task lifecycle.

This is the core enforcement mechanism - every task mutation goes through
here, and every mutation commits its field changes and audit entries as
one unit.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy.orm import Session

from compliance_tracker.clock import Clock, utcnow
from compliance_tracker.models.domain import Task
from compliance_tracker.models.enums import AuditAction, Cadence, TaskKind, TaskStatus
from compliance_tracker.models.payloads import (
    ANNOTATION_FIELDS,
    REQUIRED_FIELDS,
    CompletionRequest,
    TaskCreate,
    TaskUpdate,
)
from compliance_tracker.services.audit_trail import AuditTrail, FieldChange, diff_fields
from compliance_tracker.services.cadence import (
    DEFAULT_DUE_GRACE_DAYS,
    due_date_from_anchor,
    next_anchor_date,
    validate_cadence,
)
from compliance_tracker.services.errors import (
    InvalidCadenceError,
    LifecycleError,
    TaskAlreadyTerminalError,
    TaskValidationError,
)
from compliance_tracker.services.locks import TaskLockRegistry, task_locks
from compliance_tracker.services.store import commit, load_task

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.SCHEDULED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

CREATED_SUMMARY = "Task scheduled"
COMPLETED_SUMMARY = "Task marked as completed"
SUCCESSOR_SUMMARY = "Auto-scheduled from completed task {task_id}"


@dataclass
class CompletionResult:
    task: Task
    successor: Optional[Task] = None
    warning: Optional[str] = None


class TaskStateMachine:
    """Enforces state transition invariants and recurrence rules."""

    def __init__(
        self,
        db: Session,
        locks: TaskLockRegistry = task_locks,
        clock: Clock = utcnow,
        due_grace_days: int = DEFAULT_DUE_GRACE_DAYS
    ):
        self.db = db
        self.locks = locks
        self.clock = clock
        self.due_grace_days = due_grace_days
        self.audit = AuditTrail(db, clock=clock)

    # Reads

    def get(self, task_id: str) -> Task:
        return load_task(self.db, task_id)

    def list_tasks(
        self,
        client_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        kind: Optional[TaskKind] = None,
        assigned_to_id: Optional[str] = None
    ) -> List[Task]:
        """Tasks matching every given filter, latest anchor date first."""
        query = self.db.query(Task)
        if client_id is not None:
            query = query.filter(Task.client_id == client_id)
        if status is not None:
            query = query.filter(Task.status == status)
        if kind is not None:
            query = query.filter(Task.kind == kind)
        if assigned_to_id is not None:
            query = query.filter(Task.assigned_to_id == assigned_to_id)
        return query.order_by(Task.anchor_date.desc(), Task.created_at.desc()).all()

    def successor_chain(self, task_id: str) -> List[Task]:
        """The task followed by every task auto-scheduled from it, in order."""
        chain = [load_task(self.db, task_id)]
        seen = {task_id}
        while True:
            nxt = self.db.query(Task).filter(
                Task.predecessor_task_id == chain[-1].id
            ).order_by(Task.created_at.asc()).first()
            if nxt is None or nxt.id in seen:
                return chain
            seen.add(nxt.id)
            chain.append(nxt)

    def history(self, task_id: str):
        return self.audit.history(task_id)

    # Mutations

    def create(self, client_id: str, payload: TaskCreate, actor_id: Optional[str]) -> Task:
        """
        Schedule a new task.

        Invariants:
        - due_date >= anchor_date
        - CUSTOM cadence carries a positive custom_interval_days
        - Status starts at SCHEDULED and one CREATED entry is written
        """
        cadence = self._validate_schedule(
            payload.anchor_date, payload.due_date, payload.cadence, payload.custom_interval_days
        )
        task = Task(
            id=str(uuid.uuid4()),
            client_id=client_id,
            kind=payload.kind,
            category=payload.category,
            anchor_date=payload.anchor_date,
            due_date=payload.due_date,
            cadence=cadence,
            custom_interval_days=payload.custom_interval_days,
            status=TaskStatus.SCHEDULED,
            assigned_to_id=payload.assigned_to_id,
            auto_schedule=payload.auto_schedule,
            evidence_url=payload.evidence_url,
            notes=payload.notes,
            total_accrued_seconds=0,
        )
        self.db.add(task)
        self.audit.record(task.id, actor_id, AuditAction.CREATED, summary=CREATED_SUMMARY)
        commit(self.db, task.id)
        self.db.refresh(task)

        logger.info("Created %s task %s for client %s", task.kind.value, task.id, client_id)
        return task

    def update(self, task_id: str, changes: TaskUpdate, actor_id: Optional[str]) -> Task:
        """
        Apply the supplied fields that differ from the stored values.

        All changed fields are audited in a single batch. A payload that
        changes nothing writes nothing.

        Terminal invariant: once COMPLETED or CANCELLED, only notes and
        evidence_url may change.
        """
        supplied = changes.supplied()

        with self.locks.hold(task_id):
            task = load_task(self.db, task_id, for_update=True)
            current = {field: getattr(task, field) for field in supplied}
            diff = diff_fields(current, supplied)
            if not diff:
                return task

            self._check_update_allowed(task, diff)

            merged = {field: change.new for field, change in diff.items()}
            self._validate_schedule(
                merged.get("anchor_date", task.anchor_date),
                merged.get("due_date", task.due_date),
                merged.get("cadence", task.cadence),
                merged.get("custom_interval_days", task.custom_interval_days),
                task_id=task.id,
            )

            for field, value in merged.items():
                setattr(task, field, value)
            self.audit.record(task.id, actor_id, AuditAction.UPDATED, changes=diff)
            commit(self.db, task.id)
            self.db.refresh(task)

        if "status" in diff:
            logger.info(
                "Task %s moved %s -> %s by %s",
                task.id, diff["status"].old.value, diff["status"].new.value, actor_id,
            )
        return task

    def start_work(self, task_id: str, actor_id: Optional[str]) -> Task:
        """SCHEDULED -> IN_PROGRESS."""
        return self.update(task_id, TaskUpdate(status=TaskStatus.IN_PROGRESS), actor_id)

    def cancel(self, task_id: str, actor_id: Optional[str]) -> Task:
        return self.update(task_id, TaskUpdate(status=TaskStatus.CANCELLED), actor_id)

    def complete(
        self,
        task_id: str,
        actor_id: str,
        request: Optional[CompletionRequest] = None
    ) -> CompletionResult:
        """
        Mark a task as completed and, if auto-scheduling applies, spawn its successor.

        Steps:
        1. Refuse unknown or already-terminal tasks
        2. Set COMPLETED, completed_by_id and completed_at; merge supplied fields
        3. Audit the merged fields and one COMPLETED entry; commit
        4. If auto_schedule (request override, else stored) is on, create the
           successor from the anchor date and commit it separately

        The completion is never rolled back because scheduling the successor
        failed. That failure is logged and returned as a warning instead.
        """
        request = request or CompletionRequest()
        merged = request.model_dump(exclude_none=True)

        with self.locks.hold(task_id):
            task = load_task(self.db, task_id, for_update=True)
            if task.is_terminal:
                raise TaskAlreadyTerminalError(task.id, task.status.value)

            diff = diff_fields({field: getattr(task, field) for field in merged}, merged)
            for field, change in diff.items():
                setattr(task, field, change.new)
            task.status = TaskStatus.COMPLETED
            task.completed_by_id = actor_id
            task.completed_at = self.clock()

            batch_id = str(uuid.uuid4())
            self.audit.record(task.id, actor_id, AuditAction.UPDATED, changes=diff, batch_id=batch_id)
            self.audit.record(task.id, actor_id, AuditAction.COMPLETED,
                              summary=COMPLETED_SUMMARY, batch_id=batch_id)
            commit(self.db, task.id)
            self.db.refresh(task)
            logger.info("Task %s completed by %s", task.id, actor_id)

            result = CompletionResult(task=task)
            if task.auto_schedule:
                # The parent is already committed; from here on failures become a warning
                try:
                    result.successor = self._schedule_successor(task, actor_id)
                except Exception as e:
                    self.db.rollback()
                    logger.exception("Could not auto-schedule successor for task %s", task.id)
                    reason = e.message if isinstance(e, LifecycleError) else str(e)
                    result.warning = (
                        f"Task {task.id} was completed, but its next occurrence "
                        f"could not be scheduled: {reason}"
                    )
                    self.db.refresh(task)

        return result

    def delete(self, task_id: str) -> None:
        """
        Hard delete in any state.

        Timer sessions go with the task; audit entries stay queryable by the
        deleted task's id.
        """
        with self.locks.hold(task_id):
            task = load_task(self.db, task_id, for_update=True)
            self.db.delete(task)
            commit(self.db, task_id)
        logger.info("Deleted task %s", task_id)

    # Internals

    def _schedule_successor(self, task: Task, actor_id: str) -> Task:
        next_anchor = next_anchor_date(task.cadence, task.custom_interval_days, task.anchor_date)
        next_due = due_date_from_anchor(next_anchor, self.due_grace_days)

        successor = Task(
            id=str(uuid.uuid4()),
            client_id=task.client_id,
            kind=task.kind,
            category=task.category,
            anchor_date=next_anchor,
            due_date=next_due,
            cadence=task.cadence,
            custom_interval_days=task.custom_interval_days,
            status=TaskStatus.SCHEDULED,
            assigned_to_id=task.assigned_to_id,
            auto_schedule=task.auto_schedule,
            total_accrued_seconds=0,
            predecessor_task_id=task.id,
        )
        self.db.add(successor)
        self.audit.record(successor.id, actor_id, AuditAction.CREATED,
                          summary=SUCCESSOR_SUMMARY.format(task_id=task.id))
        commit(self.db, successor.id)
        self.db.refresh(successor)

        logger.info("Auto-scheduled task %s (anchor %s) from %s", successor.id, next_anchor, task.id)
        return successor

    def _check_update_allowed(self, task: Task, diff: Dict[str, FieldChange]) -> None:
        for field in REQUIRED_FIELDS.intersection(diff):
            if diff[field].new is None:
                raise TaskValidationError(f"{field} cannot be cleared", task_id=task.id, field=field)

        if task.is_terminal:
            blocked = sorted(set(diff) - ANNOTATION_FIELDS)
            if blocked:
                raise TaskAlreadyTerminalError(task.id, task.status.value, field=blocked[0])
            return

        if "status" in diff:
            target = diff["status"].new
            if target == TaskStatus.COMPLETED:
                raise TaskValidationError(
                    "Use the complete operation to mark a task as completed",
                    task_id=task.id, field="status", status=task.status.value,
                )
            if target not in ALLOWED_TRANSITIONS[task.status]:
                raise TaskValidationError(
                    f"Cannot move task from {task.status.value} to {target.value}",
                    task_id=task.id, field="status", status=task.status.value,
                )

    def _validate_schedule(
        self,
        anchor_date: date,
        due_date: date,
        cadence: Cadence,
        custom_interval_days: Optional[int],
        task_id: Optional[str] = None
    ) -> Cadence:
        if due_date < anchor_date:
            raise TaskValidationError(
                f"due_date {due_date.isoformat()} is before anchor_date {anchor_date.isoformat()}",
                task_id=task_id, field="due_date",
            )
        try:
            return validate_cadence(cadence, custom_interval_days)
        except InvalidCadenceError as e:
            if task_id:
                e.context["task_id"] = task_id
            raise

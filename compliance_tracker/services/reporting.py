"""
Read-only queries over task state.

Used by the stats view and by the reminder batch, which reads due dates
and never mutates tasks.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from compliance_tracker.models.domain import Task
from compliance_tracker.models.enums import TERMINAL_STATUSES, TaskKind, TaskStatus

OPEN_STATUSES = (TaskStatus.SCHEDULED, TaskStatus.IN_PROGRESS)


@dataclass
class KindStats:
    total: int = 0
    overdue: int = 0
    upcoming: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0


@dataclass
class ComplianceStats:
    total: int = 0
    overdue: int = 0
    upcoming: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0
    by_kind: Dict[str, KindStats] = field(default_factory=dict)


def is_overdue(task: Task, today: date) -> bool:
    return task.status not in TERMINAL_STATUSES and task.due_date < today


def compliance_stats(db: Session, today: date, client_ids: Optional[Iterable[str]] = None) -> ComplianceStats:
    """
    Counts across all tasks, or only those of the given clients.

    overdue: open and due before today. upcoming: open and due today or later.
    """
    query = db.query(Task)
    if client_ids is not None:
        query = query.filter(Task.client_id.in_(list(client_ids)))

    stats = ComplianceStats(by_kind={kind.value: KindStats() for kind in TaskKind})
    for task in query.all():
        for bucket in (stats, stats.by_kind[task.kind.value]):
            bucket.total += 1
            if task.status == TaskStatus.IN_PROGRESS:
                bucket.in_progress += 1
            elif task.status == TaskStatus.COMPLETED:
                bucket.completed += 1
            elif task.status == TaskStatus.CANCELLED:
                bucket.cancelled += 1

            if task.status not in TERMINAL_STATUSES:
                if task.due_date < today:
                    bucket.overdue += 1
                else:
                    bucket.upcoming += 1
    return stats


def reminder_candidates(db: Session, today: date, window_days: int = 7) -> List[Task]:
    """Open tasks that are overdue or fall due within window_days, soonest first."""
    horizon = today + timedelta(days=window_days)
    return db.query(Task).filter(
        Task.status.in_(OPEN_STATUSES),
        Task.due_date <= horizon
    ).order_by(Task.due_date.asc()).all()

"""
Timer accrual tracker - time-tracking sessions against a task.

The task's total only moves when a session closes, and the close plus the
increment commit together under the task's lock.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from compliance_tracker.clock import Clock, as_naive_utc, utcnow
from compliance_tracker.models.domain import TimerSession
from compliance_tracker.services.errors import (
    NoOpenSessionError,
    SessionAlreadyOpenError,
    TaskAlreadyTerminalError,
)
from compliance_tracker.services.locks import TaskLockRegistry, task_locks
from compliance_tracker.services.store import commit, load_task

logger = logging.getLogger(__name__)

MIN_SESSION_SECONDS = 1


@dataclass
class StopResult:
    session: TimerSession
    duration_seconds: int
    new_total: int


class TimerTracker:
    """Starts and stops timer sessions and folds their durations into the task."""

    def __init__(self, db: Session, locks: TaskLockRegistry = task_locks, clock: Clock = utcnow):
        self.db = db
        self.locks = locks
        self.clock = clock

    def _open_session(self, task_id: str) -> Optional[TimerSession]:
        return self.db.query(TimerSession).filter(
            TimerSession.task_id == task_id,
            TimerSession.end_time.is_(None)
        ).first()

    def start_session(self, task_id: str, user_id: str, now: Optional[datetime] = None) -> TimerSession:
        """
        Open a session for user_id on the task.

        A retry from the same user returns the already-open session unchanged;
        an open session owned by someone else is refused.

        Invariants:
        - At most one open session per task
        - No new time accrues on a completed or cancelled task
        """
        with self.locks.hold(task_id):
            task = load_task(self.db, task_id, for_update=True)
            if task.is_terminal:
                raise TaskAlreadyTerminalError(task.id, task.status.value)

            active = self._open_session(task_id)
            if active is not None:
                if active.user_id == user_id:
                    return active
                raise SessionAlreadyOpenError(task_id, active.id, active.user_id)

            session = TimerSession(
                task_id=task_id,
                user_id=user_id,
                start_time=as_naive_utc(now or self.clock()),
            )
            self.db.add(session)
            commit(self.db, task_id)
            self.db.refresh(session)

        logger.info("Timer started on task %s by %s", task_id, user_id)
        return session

    def stop_session(
        self,
        task_id: str,
        now: Optional[datetime] = None,
        elapsed_seconds: Optional[int] = None
    ) -> StopResult:
        """
        Close the task's open session and add its duration to the task total.

        elapsed_seconds, when supplied (a client reporting time tracked while
        offline), takes precedence over now - start_time. Either way the
        duration is at least one second.
        """
        with self.locks.hold(task_id):
            task = load_task(self.db, task_id, for_update=True)
            active = self._open_session(task_id)
            if active is None:
                raise NoOpenSessionError(task_id)

            end_time = as_naive_utc(now or self.clock())
            if elapsed_seconds is not None:
                duration = int(elapsed_seconds)
            else:
                duration = int((end_time - active.start_time).total_seconds())
            duration = max(duration, MIN_SESSION_SECONDS)

            active.end_time = end_time
            active.duration_seconds = duration
            task.total_accrued_seconds = (task.total_accrued_seconds or 0) + duration
            commit(self.db, task_id)
            self.db.refresh(task)

        logger.info(
            "Timer stopped on task %s: %ss (total %ss)",
            task_id, duration, task.total_accrued_seconds,
        )
        return StopResult(session=active, duration_seconds=duration, new_total=task.total_accrued_seconds)

    def sessions_for(self, task_id: str) -> List[TimerSession]:
        """All sessions for a task, newest first."""
        load_task(self.db, task_id)
        return self.db.query(TimerSession).filter(
            TimerSession.task_id == task_id
        ).order_by(TimerSession.start_time.desc()).all()

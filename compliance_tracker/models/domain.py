"""Domain models - the recurring compliance task and its timer sessions."""
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from compliance_tracker.clock import utcnow
from compliance_tracker.database import Base
from compliance_tracker.models.enums import Cadence, TaskKind, TaskStatus


def _new_id() -> str:
    return str(uuid.uuid4())


class Task(Base):
    """
    A recurring access review or compliance audit.

    A task progresses through states: Scheduled → In Progress → Completed,
    with Cancelled as a side-exit from either open state.

    Invariants enforced here:
    - id, client_id and kind never change after creation
    - total_accrued_seconds is only ever increased, and only by closing a timer session
    - due_date >= anchor_date (checked in the service layer)
    """
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=_new_id)
    client_id = Column(String, nullable=False, index=True)  # External client entity
    kind = Column(SQLEnum(TaskKind), nullable=False, default=TaskKind.ACCESS_REVIEW)
    category = Column(String, nullable=True)  # Framework name or audit type

    anchor_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    cadence = Column(SQLEnum(Cadence), nullable=False)
    custom_interval_days = Column(Integer, nullable=True)  # Required for CUSTOM

    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.SCHEDULED, index=True)
    assigned_to_id = Column(String, nullable=True)

    # Set only on transition into COMPLETED
    completed_by_id = Column(String, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    total_accrued_seconds = Column(Integer, nullable=False, default=0)
    auto_schedule = Column(Boolean, nullable=False, default=True)

    evidence_url = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    # Set on tasks spawned by completing their predecessor
    predecessor_task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Row version for check-and-set updates across processes
    version = Column(Integer, nullable=False)

    timer_sessions = relationship(
        "TimerSession",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TimerSession.start_time.desc()",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)

    def __repr__(self):
        return f"<Task {self.id} {self.kind.value if self.kind else None} {self.status}>"


class TimerSession(Base):
    """
    A span of tracked work against a task.

    Invariants:
    - At most one session per task has end_time = NULL
    - end_time and duration_seconds are written exactly once, on stop
    """
    __tablename__ = "timer_sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)  # NULL means the session is open
    duration_seconds = Column(Integer, nullable=True)

    task = relationship("Task", back_populates="timer_sessions")

    __table_args__ = (
        Index("ix_timer_sessions_task_open", "task_id", "end_time"),
    )

    @property
    def is_open(self) -> bool:
        return self.end_time is None

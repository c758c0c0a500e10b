"""
Typed failures raised by the lifecycle engine.

These are expected, caller-recoverable conditions - NOT crashes. Each one
carries a stable ``kind`` and enough context (task id, field, current state)
for the caller to render an actionable message.
"""
from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for every failure the engine reports to its callers."""

    kind = "LifecycleError"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, "context": self.context}


class NotFoundError(LifecycleError):
    kind = "NotFound"

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found", task_id=task_id)


class TaskAlreadyTerminalError(LifecycleError):
    """Raised when a closed task is asked to change anything but notes or evidence."""

    kind = "TaskAlreadyTerminal"

    def __init__(self, task_id: str, status: str, field: Optional[str] = None):
        detail = f" (field '{field}')" if field else ""
        super().__init__(
            f"Task {task_id} is {status} and can no longer be changed{detail}",
            task_id=task_id,
            status=status,
            field=field,
        )


class InvalidCadenceError(LifecycleError):
    kind = "InvalidCadence"

    def __init__(self, message: str, cadence: Optional[str] = None,
                 custom_interval_days: Optional[int] = None, task_id: Optional[str] = None):
        super().__init__(
            message,
            task_id=task_id,
            cadence=cadence,
            custom_interval_days=custom_interval_days,
        )


class SessionAlreadyOpenError(LifecycleError):
    kind = "SessionAlreadyOpen"

    def __init__(self, task_id: str, session_id: str, user_id: str):
        super().__init__(
            f"Task {task_id} already has an open timer session started by {user_id}",
            task_id=task_id,
            session_id=session_id,
            user_id=user_id,
        )


class NoOpenSessionError(LifecycleError):
    kind = "NoOpenSession"

    def __init__(self, task_id: str):
        super().__init__(f"No active timer session found for task {task_id}", task_id=task_id)


class TaskValidationError(LifecycleError):
    """Malformed input, e.g. a due date before the anchor date."""

    kind = "ValidationError"

    def __init__(self, message: str, task_id: Optional[str] = None,
                 field: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message, task_id=task_id, field=field, status=status)


class StorageError(LifecycleError):
    """The store failed; the caller should treat this as transient."""

    kind = "StorageError"


class ConcurrentModificationError(StorageError):
    """The task row changed underneath this request (row version mismatch)."""

    kind = "ConcurrentModification"

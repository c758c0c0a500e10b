"""Unit-of-work helpers shared by the lifecycle services."""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from compliance_tracker.models.domain import Task
from compliance_tracker.services.errors import (
    ConcurrentModificationError,
    NotFoundError,
    StorageError,
)

logger = logging.getLogger(__name__)


def load_task(db: Session, task_id: str, for_update: bool = False) -> Task:
    """
    Fetch a task or raise NotFoundError.

    for_update takes a row lock (SELECT ... FOR UPDATE) on backends that
    support it and always re-reads the row from the database.
    """
    query = db.query(Task).filter(Task.id == task_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    try:
        task = query.first()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"Could not load task {task_id}: {e}", task_id=task_id) from e
    if task is None:
        raise NotFoundError(task_id)
    return task


def commit(db: Session, task_id: Optional[str] = None) -> None:
    """Commit the session as one unit, or roll back and raise StorageError."""
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning("Concurrent modification of task %s", task_id)
        raise ConcurrentModificationError(
            f"Task {task_id} was modified by another request; retry", task_id=task_id
        ) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Storage failure while committing task %s: %s", task_id, e)
        raise StorageError(f"Storage failure: {e}", task_id=task_id) from e

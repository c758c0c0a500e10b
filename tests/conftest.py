"""Pytest configuration and shared fixtures."""
import os

# Keep the app's module-level engine off the filesystem
os.environ.setdefault("COMPLIANCE_DATABASE_URL", "sqlite://")

from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from compliance_tracker.database import Base, build_engine
from compliance_tracker.models.audit import AuditLogEntry  # noqa: F401
from compliance_tracker.models.domain import Task, TimerSession  # noqa: F401
from compliance_tracker.models.enums import Cadence, TaskKind
from compliance_tracker.models.payloads import TaskCreate
from compliance_tracker.services.locks import TaskLockRegistry
from compliance_tracker.services.state_machine import TaskStateMachine

T0 = datetime(2024, 1, 1, 9, 0, 0)


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # In-memory SQLite for fast tests
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def locks():
    return TaskLockRegistry()


@pytest.fixture
def sm(db_session, locks):
    return TaskStateMachine(db_session, locks=locks, clock=lambda: T0)


@pytest.fixture
def sample_task(sm):
    """A quarterly access review in SCHEDULED state."""
    return sm.create(
        "client_1",
        TaskCreate(
            kind=TaskKind.ACCESS_REVIEW,
            category="SOC 2",
            anchor_date=date(2024, 1, 1),
            due_date=date(2024, 1, 8),
            cadence=Cadence.QUARTERLY,
            assigned_to_id="user_a",
            auto_schedule=True,
        ),
        actor_id="user_a",
    )


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory over a file-backed database, for tests that use several threads."""
    engine = build_engine(f"sqlite:///{tmp_path / 'compliance.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()

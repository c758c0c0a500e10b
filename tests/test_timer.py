"""
Tests for the timer accrual tracker.

These tests prove:
- At most one open session per task, and start is idempotent for its owner
- The task total moves only when a session closes, by the session's duration
- Closing a session and incrementing the total are never interleaved
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest

from compliance_tracker.models.domain import Task, TimerSession
from compliance_tracker.services.errors import (
    NoOpenSessionError,
    NotFoundError,
    SessionAlreadyOpenError,
    TaskAlreadyTerminalError,
)
from compliance_tracker.services.locks import TaskLockRegistry
from compliance_tracker.services.timer import TimerTracker
from conftest import T0


@pytest.fixture
def timer(db_session, locks):
    return TimerTracker(db_session, locks=locks, clock=lambda: T0)


def cycle(timer, task_id, seconds, start):
    timer.start_session(task_id, "user_a", now=start)
    return timer.stop_session(task_id, now=start + timedelta(seconds=seconds))


class TestStartSession:

    def test_start_opens_session(self, timer, sample_task):
        session = timer.start_session(sample_task.id, "user_a")
        assert session.is_open
        assert session.start_time == T0
        assert session.user_id == "user_a"

    def test_start_is_idempotent_for_owner(self, db_session, timer, sample_task):
        """
        INVARIANT: a retry returns the open session unchanged, never a second one.
        """
        first = timer.start_session(sample_task.id, "user_a")
        again = timer.start_session(sample_task.id, "user_a", now=T0 + timedelta(minutes=5))

        assert again.id == first.id
        assert again.start_time == T0
        assert db_session.query(TimerSession).count() == 1

    def test_start_by_other_user_refused(self, db_session, timer, sample_task):
        first = timer.start_session(sample_task.id, "user_a")
        with pytest.raises(SessionAlreadyOpenError) as exc_info:
            timer.start_session(sample_task.id, "user_b")

        assert exc_info.value.context["session_id"] == first.id
        assert exc_info.value.context["user_id"] == "user_a"
        assert db_session.query(TimerSession).count() == 1

    def test_start_on_completed_task_refused(self, sm, timer, sample_task):
        sm.complete(sample_task.id, "user_a")
        with pytest.raises(TaskAlreadyTerminalError):
            timer.start_session(sample_task.id, "user_a")

    def test_start_on_unknown_task(self, timer):
        with pytest.raises(NotFoundError):
            timer.start_session("missing", "user_a")


class TestStopSession:

    def test_stop_without_session_leaves_total(self, db_session, timer, sample_task):
        """
        INVARIANT: stopping with nothing open fails and accrues nothing.
        """
        with pytest.raises(NoOpenSessionError) as exc_info:
            timer.stop_session(sample_task.id)
        assert exc_info.value.kind == "NoOpenSession"
        assert db_session.get(Task, sample_task.id).total_accrued_seconds == 0

    def test_cycles_accumulate(self, db_session, timer, sample_task):
        first = cycle(timer, sample_task.id, 30, T0)
        second = cycle(timer, sample_task.id, 45, T0 + timedelta(minutes=10))

        assert first.new_total == 30
        assert second.new_total == 75
        assert db_session.get(Task, sample_task.id).total_accrued_seconds == 75

    def test_stop_records_end_and_duration(self, timer, sample_task):
        result = cycle(timer, sample_task.id, 600, T0)
        assert result.session.end_time == T0 + timedelta(seconds=600)
        assert result.session.duration_seconds == 600
        assert not result.session.is_open

    def test_sub_second_session_counts_one_second(self, timer, sample_task):
        timer.start_session(sample_task.id, "user_a", now=T0)
        result = timer.stop_session(sample_task.id, now=T0 + timedelta(milliseconds=300))
        assert result.duration_seconds == 1
        assert result.new_total == 1

    def test_elapsed_overrides_wall_clock(self, timer, sample_task):
        timer.start_session(sample_task.id, "user_a", now=T0)
        result = timer.stop_session(
            sample_task.id, now=T0 + timedelta(hours=3), elapsed_seconds=1200
        )
        assert result.duration_seconds == 1200
        assert result.session.duration_seconds == 1200

    def test_non_positive_elapsed_clamped(self, timer, sample_task):
        timer.start_session(sample_task.id, "user_a", now=T0)
        result = timer.stop_session(sample_task.id, now=T0, elapsed_seconds=0)
        assert result.duration_seconds == 1

    def test_stop_allowed_after_completion(self, sm, timer, sample_task):
        """A session left running when the task closed can still be stopped."""
        timer.start_session(sample_task.id, "user_a", now=T0)
        sm.complete(sample_task.id, "user_a")

        result = timer.stop_session(sample_task.id, now=T0 + timedelta(seconds=120))
        assert result.new_total == 120

    def test_sessions_for(self, timer, sample_task):
        cycle(timer, sample_task.id, 30, T0)
        cycle(timer, sample_task.id, 45, T0 + timedelta(hours=1))
        sessions = timer.sessions_for(sample_task.id)
        assert [s.duration_seconds for s in sessions] == [45, 30]

    def test_aware_now_is_normalized_to_utc(self, timer, sample_task):
        """Stored times are naive UTC; an aware `now` is converted, not rejected."""
        timer.start_session(sample_task.id, "user_a", now=T0)
        paris = timezone(timedelta(hours=1))
        result = timer.stop_session(sample_task.id, now=datetime(2024, 1, 1, 10, 0, 30, tzinfo=paris))

        assert result.duration_seconds == 30
        assert result.session.end_time == T0 + timedelta(seconds=30)

    def test_aware_start_is_normalized_to_utc(self, timer, sample_task):
        session = timer.start_session(sample_task.id, "user_a", now=T0.replace(tzinfo=timezone.utc))
        assert session.start_time == T0
        assert session.start_time.tzinfo is None


class TestConcurrentStop:

    def test_racing_stops_close_once(self, file_sessions, sample_task):
        """
        INVARIANT: two stops racing on one open session accrue its duration
        exactly once; the loser sees NoOpenSession.
        """
        locks = TaskLockRegistry()
        setup = file_sessions()
        task = Task(
            id="task_race", client_id="client_1", kind=sample_task.kind,
            anchor_date=sample_task.anchor_date, due_date=sample_task.due_date,
            cadence=sample_task.cadence,
        )
        setup.add(task)
        setup.commit()
        TimerTracker(setup, locks=locks).start_session("task_race", "user_a", now=T0)
        setup.close()

        barrier = threading.Barrier(2)
        outcomes = []

        def stop():
            db = file_sessions()
            try:
                barrier.wait()
                result = TimerTracker(db, locks=locks).stop_session(
                    "task_race", now=T0 + timedelta(seconds=50)
                )
                outcomes.append(result.duration_seconds)
            except NoOpenSessionError:
                outcomes.append("no_session")
            finally:
                db.close()

        threads = [threading.Thread(target=stop) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes, key=str) == [50, "no_session"]
        check = file_sessions()
        assert check.get(Task, "task_race").total_accrued_seconds == 50
        check.close()
        assert len(locks) == 0


class TestLockRegistry:

    def test_entry_lives_only_while_held(self):
        registry = TaskLockRegistry()
        with registry.hold("a"):
            assert len(registry) == 1
            assert registry.is_held("a")
        assert len(registry) == 0
        assert not registry.is_held("a")

    def test_different_tasks_do_not_block(self):
        registry = TaskLockRegistry()
        with registry.hold("a"):
            with registry.hold("b"):
                assert registry.is_held("a") and registry.is_held("b")
                assert len(registry) == 2
        assert len(registry) == 0

    def test_same_task_serializes(self):
        registry = TaskLockRegistry()
        entered = threading.Event()

        def contender():
            with registry.hold("a"):
                entered.set()

        with registry.hold("a"):
            worker = threading.Thread(target=contender)
            worker.start()
            assert not entered.wait(0.2)
        worker.join(timeout=5)

        assert entered.is_set()
        assert len(registry) == 0

    def test_entry_released_when_body_raises(self):
        registry = TaskLockRegistry()
        with pytest.raises(RuntimeError):
            with registry.hold("a"):
                raise RuntimeError("boom")
        assert len(registry) == 0

    def test_unknown_tasks_leave_no_entries(self, db_session, locks):
        """
        INVARIANT: requests naming ids that do not exist do not grow the registry.
        """
        timer = TimerTracker(db_session, locks=locks, clock=lambda: T0)
        for i in range(50):
            with pytest.raises(NotFoundError):
                timer.stop_session(f"unknown-{i}")
            with pytest.raises(NotFoundError):
                timer.start_session(f"unknown-{i}", "user_a")
        assert len(locks) == 0

"""Tests for the read-only stats and reminder queries."""
from datetime import date

import pytest

from compliance_tracker.models.enums import Cadence, TaskKind
from compliance_tracker.models.payloads import CompletionRequest, TaskCreate
from compliance_tracker.services.reporting import compliance_stats, is_overdue, reminder_candidates

TODAY = date(2024, 2, 1)


def make_task(sm, client_id, due, kind=TaskKind.ACCESS_REVIEW):
    return sm.create(client_id, TaskCreate(
        kind=kind,
        anchor_date=date(2024, 1, 1),
        due_date=due,
        cadence=Cadence.ANNUAL,
        auto_schedule=False,
    ), actor_id="user_a")


@pytest.fixture
def portfolio(sm):
    """One task in each interesting position relative to TODAY."""
    tasks = {
        "overdue": make_task(sm, "client_1", date(2024, 1, 20)),
        "due_soon": make_task(sm, "client_1", date(2024, 2, 5), TaskKind.COMPLIANCE_AUDIT),
        "due_later": make_task(sm, "client_2", date(2024, 3, 15)),
        "in_progress": make_task(sm, "client_2", date(2024, 1, 25), TaskKind.COMPLIANCE_AUDIT),
        "completed": make_task(sm, "client_1", date(2024, 1, 10)),
        "cancelled": make_task(sm, "client_2", date(2024, 1, 10)),
    }
    sm.start_work(tasks["in_progress"].id, "user_a")
    sm.complete(tasks["completed"].id, "user_a", CompletionRequest())
    sm.cancel(tasks["cancelled"].id, "user_a")
    return tasks


class TestOverdue:

    def test_open_task_past_due(self, portfolio):
        assert is_overdue(portfolio["overdue"], TODAY)
        assert is_overdue(portfolio["in_progress"], TODAY)

    def test_due_today_is_not_overdue(self, portfolio):
        assert not is_overdue(portfolio["due_soon"], date(2024, 2, 5))

    def test_closed_tasks_never_overdue(self, portfolio):
        assert not is_overdue(portfolio["completed"], TODAY)
        assert not is_overdue(portfolio["cancelled"], TODAY)


class TestComplianceStats:

    def test_totals(self, db_session, portfolio):
        stats = compliance_stats(db_session, TODAY)
        assert stats.total == 6
        assert stats.overdue == 2
        assert stats.upcoming == 2
        assert stats.in_progress == 1
        assert stats.completed == 1
        assert stats.cancelled == 1

    def test_by_kind(self, db_session, portfolio):
        stats = compliance_stats(db_session, TODAY)
        audits = stats.by_kind["COMPLIANCE_AUDIT"]
        reviews = stats.by_kind["ACCESS_REVIEW"]
        assert (audits.total, audits.overdue, audits.upcoming) == (2, 1, 1)
        assert (reviews.total, reviews.overdue, reviews.completed) == (4, 1, 1)

    def test_client_filter(self, db_session, portfolio):
        stats = compliance_stats(db_session, TODAY, client_ids=["client_2"])
        assert stats.total == 3
        assert stats.cancelled == 1
        assert stats.upcoming == 1

    def test_empty_store(self, db_session):
        stats = compliance_stats(db_session, TODAY)
        assert stats.total == 0
        assert set(stats.by_kind) == {"ACCESS_REVIEW", "COMPLIANCE_AUDIT"}


class TestReminders:

    def test_open_tasks_within_window_soonest_first(self, db_session, portfolio):
        candidates = reminder_candidates(db_session, TODAY, window_days=7)
        assert [t.id for t in candidates] == [
            portfolio["overdue"].id,
            portfolio["in_progress"].id,
            portfolio["due_soon"].id,
        ]

    def test_zero_window_only_overdue_and_due_today(self, db_session, portfolio):
        candidates = reminder_candidates(db_session, TODAY, window_days=0)
        assert {t.id for t in candidates} == {portfolio["overdue"].id, portfolio["in_progress"].id}

    def test_reminders_do_not_mutate(self, db_session, sm, portfolio):
        before = [(e.id, e.action) for e in sm.history(portfolio["overdue"].id)]
        reminder_candidates(db_session, TODAY)
        assert [(e.id, e.action) for e in sm.history(portfolio["overdue"].id)] == before

"""Tests for technician scheduling conflict detection."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from orderflow.db.models import Project, ProjectStatus
from orderflow.services.scheduling import (
    SchedulingConflictChecker,
    conflicts_to_dicts,
    window_end,
)

TEN = datetime(2030, 1, 15, 10, 0)


def _book(db: Session, seed, start: datetime, minutes: int = 60, **kwargs) -> Project:
    project = Project(
        org_id=kwargs.pop("org_id", seed.company.id),
        customer_id=seed.company_customer.id,
        address_line1="1 Test Lane",
        scheduled_time=start,
        scheduled_end=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        technician_id=kwargs.pop("technician_id", seed.technician.id),
        **kwargs,
    )
    db.add(project)
    db.commit()
    return project


@pytest.fixture
def checker(db_session: Session) -> SchedulingConflictChecker:
    return SchedulingConflictChecker(db_session)


class TestWindowEnd:
    """Tests for window_end."""

    def test_adds_duration(self):
        assert window_end(TEN, 90) == datetime(2030, 1, 15, 11, 30)

    def test_missing_duration_defaults_to_an_hour(self):
        assert window_end(TEN, None) == datetime(2030, 1, 15, 11, 0)


class TestFindConflicts:
    """Tests for SchedulingConflictChecker.find_conflicts."""

    def test_overlapping_window_conflicts(self, db_session, seed, checker):
        """A 10:30 booking overlaps an existing 10:00-11:00 booking."""
        existing = _book(db_session, seed, TEN)

        conflicts = checker.find_conflicts(
            seed.company.id, seed.technician.id, TEN + timedelta(minutes=30), 60
        )
        assert [p.id for p in conflicts] == [existing.id]

    def test_back_to_back_does_not_conflict(self, db_session, seed, checker):
        """The window end is exclusive, so 11:00 follows 10:00-11:00 cleanly."""
        _book(db_session, seed, TEN)

        assert checker.find_conflicts(
            seed.company.id, seed.technician.id, TEN + timedelta(hours=1), 60
        ) == []
        assert checker.find_conflicts(
            seed.company.id, seed.technician.id, TEN - timedelta(hours=1), 60
        ) == []

    def test_enclosing_window_conflicts(self, db_session, seed, checker):
        _book(db_session, seed, TEN + timedelta(minutes=15), 15)

        conflicts = checker.find_conflicts(
            seed.company.id, seed.technician.id, TEN, 120
        )
        assert len(conflicts) == 1

    def test_cancelled_projects_are_ignored(self, db_session, seed, checker):
        _book(db_session, seed, TEN, status=ProjectStatus.cancelled.value)

        assert checker.find_conflicts(seed.company.id, seed.technician.id, TEN) == []

    def test_other_technician_is_ignored(self, db_session, seed, checker):
        _book(db_session, seed, TEN, technician_id=seed.owner.id)

        assert checker.find_conflicts(seed.company.id, seed.technician.id, TEN) == []

    def test_other_org_is_ignored(self, db_session, seed, checker):
        _book(db_session, seed, TEN, org_id=seed.provider.id)

        assert checker.find_conflicts(seed.company.id, seed.technician.id, TEN) == []

    def test_exclude_project_id(self, db_session, seed, checker):
        existing = _book(db_session, seed, TEN)

        assert checker.find_conflicts(
            seed.company.id, seed.technician.id, TEN,
            exclude_project_id=existing.id,
        ) == []

    def test_results_ordered_by_start(self, db_session, seed, checker):
        later = _book(db_session, seed, TEN + timedelta(minutes=60))
        earlier = _book(db_session, seed, TEN)

        conflicts = checker.find_conflicts(
            seed.company.id, seed.technician.id, TEN, 180
        )
        assert [p.id for p in conflicts] == [earlier.id, later.id]

    def test_lock_technician_runs_inside_transaction(self, db_session, seed, checker):
        """SQLite ignores FOR UPDATE; the statement must still execute."""
        checker.lock_technician(seed.technician.id)
        db_session.rollback()


def test_conflicts_to_dicts(db_session, seed):
    project = _book(db_session, seed, TEN)

    assert conflicts_to_dicts([project]) == [
        {
            "project_id": project.id,
            "scheduled_time": "2030-01-15T10:00:00",
            "scheduled_end": "2030-01-15T11:00:00",
        }
    ]

"""Technician scheduling conflict detection.

A project occupies its technician for ``[scheduled_time, scheduled_end)``.
Two windows conflict when they overlap; back-to-back bookings do not.
Cancelled projects never conflict.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.db.models import Project, ProjectStatus, User
from orderflow.services.order_payload import DEFAULT_DURATION_MINUTES

logger = logging.getLogger(__name__)


def window_end(start: datetime, duration_minutes: int | None) -> datetime:
    """End of a booking window starting at ``start``."""
    return start + timedelta(minutes=duration_minutes or DEFAULT_DURATION_MINUTES)


def conflicts_to_dicts(projects: list[Project]) -> list[dict[str, Any]]:
    """Render conflicting projects for an error payload."""
    return [
        {
            "project_id": p.id,
            "scheduled_time": p.scheduled_time.isoformat(),
            "scheduled_end": p.scheduled_end.isoformat(),
        }
        for p in projects
    ]


class SchedulingConflictChecker:
    """Finds a technician's overlapping commitments within an organization."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def lock_technician(self, technician_id: str) -> None:
        """Take a row lock on the technician for the current transaction.

        Serializes concurrent bookings of the same technician on databases
        with row locks. SQLite ignores FOR UPDATE; its write transaction
        already serializes writers.
        """
        self.db.execute(
            select(User.id).where(User.id == technician_id).with_for_update()
        )

    def find_conflicts(
        self,
        org_id: str,
        technician_id: str,
        start: datetime,
        duration_minutes: int | None = DEFAULT_DURATION_MINUTES,
        exclude_project_id: str | None = None,
    ) -> list[Project]:
        """Return projects that overlap the proposed window.

        Args:
            org_id: Organization the booking is in.
            technician_id: Technician being booked.
            start: Proposed start (naive UTC).
            duration_minutes: Proposed length; None means the default 60.
            exclude_project_id: Project to ignore, used when re-checking
                after inserting the new project.

        Returns:
            Overlapping projects ordered by start time.
        """
        end = window_end(start, duration_minutes)
        stmt = (
            select(Project)
            .where(
                Project.org_id == org_id,
                Project.technician_id == technician_id,
                Project.status != ProjectStatus.cancelled.value,
                Project.scheduled_time < end,
                Project.scheduled_end > start,
            )
            .order_by(Project.scheduled_time)
        )
        if exclude_project_id is not None:
            stmt = stmt.where(Project.id != exclude_project_id)

        conflicts = list(self.db.scalars(stmt).all())
        if conflicts:
            logger.info(
                "Technician %s has %d conflicting booking(s) for %s-%s",
                technician_id, len(conflicts), start.isoformat(), end.isoformat(),
            )
        return conflicts

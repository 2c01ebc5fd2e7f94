"""Technician calendar integration.

Two operations against the calendar provider:

1. ``find_busy_slots`` asks for the technician's free/busy blocks in a
   proposed window, so booking can refuse a slot the technician already
   holds outside this system. Callers run it outside any transaction.
2. ``create_event`` pushes a booked project to the technician's calendar.
   It runs inside the order's transaction under a savepoint. If the
   provider or the local insert fails, only the savepoint is rolled back
   and the order still commits without a calendar event.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
from sqlalchemy.orm import Session

from orderflow.config import CalendarConfig
from orderflow.db.models import CalendarEvent, Project, User
from orderflow.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BusySlot:
    """A block the technician's calendar reports as busy (naive UTC)."""

    start: datetime
    end: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "external_calendar",
            "start_time": _iso_z(self.start),
            "end_time": _iso_z(self.end),
        }


def event_summary(project: Project) -> str:
    parts = [project.address_line1, project.city]
    return "Shoot: " + ", ".join(p for p in parts if p)


def _from_epoch(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=UTC).replace(tzinfo=None)


def _iso_z(value: datetime) -> str:
    return value.isoformat() + "Z"


def parse_busy_slots(body: dict, start: datetime, end: datetime) -> list[BusySlot]:
    """Busy entries of a free/busy response that overlap ``[start, end)``.

    Entries carry epoch-second ``start_time``/``end_time`` and a ``status``;
    anything other than ``busy`` (free, tentative) is ignored.
    """
    slots = []
    for entry in body.get("time_slots") or []:
        if entry.get("status") != "busy":
            continue
        slot = BusySlot(_from_epoch(entry["start_time"]), _from_epoch(entry["end_time"]))
        if slot.start < end and slot.end > start:
            slots.append(slot)
    return sorted(slots, key=lambda s: s.start)


class CalendarSyncService:
    """Free/busy lookups and event creation on the technician's calendar.

    Args:
        config: Calendar provider settings. An empty token disables sync.
        client: Optional httpx client, injected by tests.
    """

    def __init__(self, config: CalendarConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def _post(self, path: str, payload: dict) -> dict:
        url = f"{self._config.api_url.rstrip('/')}/{path}"
        headers = {
            "Authorization": f"Bearer {self._config.access_token}",
            "Content-Type": "application/json",
        }
        if self._client is not None:
            response = self._client.post(
                url, json=payload, headers=headers,
                timeout=self._config.timeout_seconds,
            )
        else:
            with httpx.Client(timeout=self._config.timeout_seconds) as client:
                response = client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        return response.json() if response.content else {}

    def _post_event(self, payload: dict) -> str:
        """Create the remote event and return its provider id."""
        body = self._post("events", payload)
        event = body.get("event") or {}
        return str(event.get("event_id") or payload["event_id"])

    def find_busy_slots(
        self, calendar_id: str | None, start: datetime, end: datetime
    ) -> list[BusySlot]:
        """Return the calendar's busy blocks overlapping ``[start, end)``.

        Returns an empty list when sync is disabled or no calendar is linked.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx response.
        """
        if not self.enabled or not calendar_id:
            return []
        body = self._post(
            "free_busy",
            {"calendar_id": calendar_id, "start": _iso_z(start), "end": _iso_z(end)},
        )
        slots = parse_busy_slots(body, start, end)
        if slots:
            logger.info(
                "Calendar %s has %d busy block(s) for %s-%s",
                calendar_id, len(slots), start.isoformat(), end.isoformat(),
            )
        return slots

    def create_event(self, db: Session, project: Project) -> CalendarEvent | None:
        """Create the calendar event for a project with an assigned technician.

        Returns:
            The persisted CalendarEvent, or None when sync is disabled, the
            technician has no linked calendar, or any step failed.
        """
        if not self.enabled or not project.technician_id:
            return None

        technician = db.get(User, project.technician_id)
        if technician is None or not technician.calendar_id:
            logger.info(
                "Technician %s has no linked calendar, skipping event for project %s",
                project.technician_id, project.id,
            )
            return None

        payload = {
            "event_id": project.id,
            "summary": event_summary(project),
            "start": _iso_z(project.scheduled_time),
            "end": _iso_z(project.scheduled_end),
            "calendar_id": technician.calendar_id,
        }
        try:
            with db.begin_nested():
                external_id = self._post_event(payload)
                event = CalendarEvent(
                    project_id=project.id,
                    technician_id=technician.id,
                    external_event_id=external_id,
                    calendar_id=technician.calendar_id,
                    starts_at=project.scheduled_time,
                    ends_at=project.scheduled_end,
                )
                db.add(event)
        except Exception as e:
            logger.warning(
                "Failed to create calendar event for project %s: %s",
                project.id, sanitize_error_message(str(e)),
            )
            return None

        logger.info(
            "Created calendar event %s for project %s", event.external_event_id, project.id
        )
        return event

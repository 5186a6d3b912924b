from __future__ import annotations

from datetime import datetime
from typing import Any

from wc_dispatch.clients import CalendarService
from wc_dispatch.logger import JsonlLogger

DEFAULT_REMINDERS: dict[str, Any] = {
    "useDefault": False,
    "overrides": [
        {"method": "email", "minutes": 24 * 60},
        {"method": "popup", "minutes": 60},
    ],
}


class CalendarAdapter:
    def __init__(
        self, service: CalendarService, logger: JsonlLogger, calendar_id: str = "primary"
    ) -> None:
        self._service = service
        self._logger = logger
        self._calendar_id = calendar_id

    def create_event(
        self,
        *,
        summary: str,
        start: datetime,
        end: datetime,
        time_zone: str,
        location: str | None = None,
        description: str | None = None,
        attendees: list[str] | None = None,
        reminders: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        # naive local datetimes + explicit timeZone; Calendar resolves the offset
        body: dict[str, Any] = {
            "summary": summary,
            "location": location or "",
            "description": description or "",
            "start": {"dateTime": start.isoformat(timespec="seconds"), "timeZone": time_zone},
            "end": {"dateTime": end.isoformat(timespec="seconds"), "timeZone": time_zone},
            "attendees": [{"email": a} for a in attendees or []],
            "reminders": reminders if reminders is not None else DEFAULT_REMINDERS,
        }

        self._logger.info(
            "calendar_insert_start",
            calendar_id=self._calendar_id,
            summary=summary,
            start=body["start"]["dateTime"],
        )
        try:
            event = (
                self._service.events().insert(calendarId=self._calendar_id, body=body).execute()
            )
        except Exception as exc:
            raise RuntimeError("Calendar insert failed while creating job event") from exc

        event = event if isinstance(event, dict) else {}
        self._logger.info(
            "calendar_insert_ok", calendar_id=self._calendar_id, event_id=event.get("id")
        )
        return event

    def update_event(self, event_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        self._logger.info(
            "calendar_patch_start", calendar_id=self._calendar_id, event_id=event_id, keys=sorted(patch)
        )
        try:
            event = (
                self._service.events()
                .patch(calendarId=self._calendar_id, eventId=event_id, body=patch)
                .execute()
            )
        except Exception as exc:
            raise RuntimeError(f"Calendar patch failed for event {event_id}") from exc

        self._logger.info("calendar_patch_ok", calendar_id=self._calendar_id, event_id=event_id)
        return event if isinstance(event, dict) else {}

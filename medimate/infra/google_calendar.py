"""
Google Calendar events for appointments.

Times are naive wall-clock datetimes in the clinic timezone; the timezone is
attached when talking to the API.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from medimate.config import settings
from medimate.core.scheduling.errors import ExternalServiceError
from medimate.core.scheduling.models import CalendarEvent, CalendarEventArgs
from .google import CALENDAR_SCOPES, GoogleService

logger = logging.getLogger(__name__)

# Already gone counts as deleted
GONE_STATUSES = (404, 410)


class GoogleCalendarService:
    """Creates, updates, deletes and lists events on one calendar."""

    def __init__(
        self,
        google: Optional[GoogleService] = None,
        calendar_id: Optional[str] = None,
        timezone: Optional[str] = None,
    ):
        """Initialize calendar service.

        Args:
            google: Calendar API wrapper (defaults to service account from settings)
            calendar_id: Calendar ID (defaults to settings)
            timezone: IANA timezone of event times (defaults to clinic timezone)
        """
        self._google = google or GoogleService.for_api(
            "calendar",
            "calendar",
            "v3",
            settings.google_calendar_client_email,
            settings.calendar_private_key,
            CALENDAR_SCOPES,
        )
        self.calendar_id = calendar_id or settings.google_calendar_id
        self.timezone = timezone or settings.clinic_timezone

    def _event_time(self, value: datetime) -> dict:
        return {
            "dateTime": value.replace(tzinfo=None).isoformat(timespec="seconds"),
            "timeZone": self.timezone,
        }

    def _body(self, args: CalendarEventArgs) -> dict:
        body: dict[str, Any] = {}
        if args.summary is not None:
            body["summary"] = args.summary
        if args.description is not None:
            body["description"] = args.description
        if args.start is not None:
            body["start"] = self._event_time(args.start)
        if args.end is not None:
            body["end"] = self._event_time(args.end)
        return body

    async def create_event(self, args: CalendarEventArgs) -> str:
        """
        Create an event.

        Args:
            args: Event fields (summary, start and end are required)

        Returns:
            Event ID
        """
        if args.start is None or args.end is None:
            raise ValueError("start and end are required to create an event")

        body = self._body(args)
        created = await self._google.execute(
            lambda s: s.events().insert(calendarId=self.calendar_id, body=body),
            "create_event",
            idempotent=False,
        )
        event_id = (created or {}).get("id")
        if not event_id:
            raise ExternalServiceError("calendar", "create_event returned no event id")

        logger.info(f"Calendar event created: {event_id} ({args.summary})")
        return event_id

    async def update_event(self, event_id: str, args: CalendarEventArgs) -> None:
        """Patch only the fields set in args."""
        body = self._body(args)
        await self._google.execute(
            lambda s: s.events().patch(
                calendarId=self.calendar_id, eventId=event_id, body=body
            ),
            "update_event",
        )
        logger.info(f"Calendar event updated: {event_id}")

    async def delete_event(self, event_id: str) -> None:
        """Delete an event. Deleting a missing event succeeds."""
        await self._google.execute(
            lambda s: s.events().delete(calendarId=self.calendar_id, eventId=event_id),
            "delete_event",
            ok_statuses=GONE_STATUSES,
        )
        logger.info(f"Calendar event deleted: {event_id}")

    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """
        List single events overlapping [start, end).

        Args:
            start: Window start (clinic wall-clock)
            end: Window end (clinic wall-clock)

        Returns:
            Events ordered by start time
        """
        tz = ZoneInfo(self.timezone)
        time_min = start.replace(tzinfo=tz).isoformat()
        time_max = end.replace(tzinfo=tz).isoformat()

        events: list[CalendarEvent] = []
        page_token: Optional[str] = None
        while True:
            response = await self._google.execute(
                lambda s, token=page_token: s.events().list(
                    calendarId=self.calendar_id,
                    timeMin=time_min,
                    timeMax=time_max,
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=token,
                ),
                "list_events",
            )
            response = response or {}
            for item in response.get("items", []):
                events.append(self._to_event(item, tz))

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return events

    def _to_event(self, item: dict, tz: ZoneInfo) -> CalendarEvent:
        start_info = item.get("start", {})
        start: Optional[datetime] = None
        if start_info.get("dateTime"):
            parsed = datetime.fromisoformat(start_info["dateTime"].replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(tz).replace(tzinfo=None)
            start = parsed
        elif start_info.get("date"):
            start = datetime.fromisoformat(start_info["date"])

        return CalendarEvent(
            id=item.get("id", ""),
            summary=item.get("summary", ""),
            start=start,
            extra={"htmlLink": item.get("htmlLink")} if item.get("htmlLink") else {},
        )


# Singleton
_calendar: Optional[GoogleCalendarService] = None


def get_calendar_service() -> GoogleCalendarService:
    """Get singleton GoogleCalendarService."""
    global _calendar
    if _calendar is None:
        _calendar = GoogleCalendarService()
    return _calendar

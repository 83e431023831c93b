"""Tests for the Google Sheets and Calendar adapters."""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from medimate.core.scheduling.errors import ExternalServiceError
from medimate.core.scheduling.models import AppointmentFilter, AppointmentRecord, CalendarEventArgs
from medimate.infra.google import GoogleService, build_credentials
from medimate.infra.google_calendar import GoogleCalendarService
from medimate.infra.sheets import HEADER, SheetsAppointmentStore


def http_error(status: int) -> HttpError:
    return HttpError(SimpleNamespace(status=status, reason="error"), b"")


def service_for(resource) -> GoogleService:
    return GoogleService("test", lambda: resource, max_attempts=3, base_delay=0)


class TestGoogleService:
    """Test retried execution."""

    @pytest.mark.asyncio
    async def test_returns_response_body(self):
        resource = MagicMock()
        resource.things.return_value.get.return_value.execute.return_value = {"id": "1"}

        result = await service_for(resource).execute(lambda r: r.things().get(), "get_thing")

        assert result == {"id": "1"}

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        request = MagicMock()
        request.execute.side_effect = [http_error(503), http_error(429), {"ok": True}]

        result = await service_for(MagicMock()).execute(lambda r: request, "flaky")

        assert result == {"ok": True}
        assert request.execute.call_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        request = MagicMock()
        request.execute.side_effect = http_error(503)

        with pytest.raises(ExternalServiceError) as exc_info:
            await service_for(MagicMock()).execute(lambda r: request, "flaky")

        assert "flaky failed (503)" in str(exc_info.value)
        assert request.execute.call_count == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        request = MagicMock()
        request.execute.side_effect = http_error(400)

        with pytest.raises(ExternalServiceError):
            await service_for(MagicMock()).execute(lambda r: request, "bad_request")

        assert request.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_ok_status_treated_as_success(self):
        request = MagicMock()
        request.execute.side_effect = http_error(404)

        result = await service_for(MagicMock()).execute(
            lambda r: request, "delete_event", ok_statuses=(404, 410)
        )

        assert result is None

    @pytest.mark.asyncio
    async def test_non_idempotent_write_not_replayed(self):
        request = MagicMock()
        request.execute.side_effect = TimeoutError("read timed out")

        with pytest.raises(ExternalServiceError):
            await service_for(MagicMock()).execute(lambda r: request, "append_row", idempotent=False)

        assert request.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_non_idempotent_write_not_retried_on_server_error(self):
        request = MagicMock()
        request.execute.side_effect = http_error(503)

        with pytest.raises(ExternalServiceError):
            await service_for(MagicMock()).execute(lambda r: request, "append_row", idempotent=False)

        assert request.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_non_idempotent_write_retried_when_rate_limited(self):
        request = MagicMock()
        request.execute.side_effect = [http_error(429), {"ok": True}]

        result = await service_for(MagicMock()).execute(
            lambda r: request, "append_row", idempotent=False
        )

        assert result == {"ok": True}
        assert request.execute.call_count == 2

    @pytest.mark.asyncio
    async def test_resource_built_once(self):
        factory = MagicMock(return_value=MagicMock())
        service = GoogleService("test", factory, base_delay=0)

        await service.execute(lambda r: r.a(), "first")
        await service.execute(lambda r: r.b(), "second")

        factory.assert_called_once()

    def test_credentials_required(self):
        with pytest.raises(ExternalServiceError):
            build_credentials("", "", ["scope"])


class TestSheetsAppointmentStore:
    """Test the spreadsheet-backed ledger."""

    @pytest.fixture
    def resource(self):
        resource = MagicMock()
        resource.spreadsheets.return_value.get.return_value.execute.return_value = {
            "sheets": [{"properties": {"title": "Appointments"}}]
        }
        return resource

    @pytest.fixture
    def values(self, resource):
        return resource.spreadsheets.return_value.values.return_value

    @pytest.fixture
    def store(self, resource):
        return SheetsAppointmentStore(google=service_for(resource), spreadsheet_id="sheet-1")

    def record(self, **overrides) -> AppointmentRecord:
        fields = dict(
            id="wamid.1",
            patient_name="Jane Doe",
            phone_number="15551112222",
            appointment_date="2025-03-10",
            appointment_time="14:00",
            reason="checkup",
            status="booked",
            calendar_event_id="evt-1",
        )
        fields.update(overrides)
        return AppointmentRecord(**fields)

    @pytest.mark.asyncio
    async def test_creates_sheet_and_header(self, resource, values, store):
        resource.spreadsheets.return_value.get.return_value.execute.return_value = {"sheets": []}
        values.get.return_value.execute.side_effect = [{}, {"values": []}]

        await store.query(AppointmentFilter())

        resource.spreadsheets.return_value.batchUpdate.assert_called_once()
        header_call = values.update.call_args.kwargs
        assert header_call["range"] == "Appointments!A1:I1"
        assert header_call["body"] == {"values": [HEADER]}

    @pytest.mark.asyncio
    async def test_append_returns_row_ref(self, values, store):
        values.get.return_value.execute.return_value = {"values": [HEADER]}
        values.append.return_value.execute.return_value = {
            "updates": {"updatedRange": "Appointments!A5:I5"}
        }

        stored = await store.append(self.record())

        assert stored.row_ref == 5
        body = values.append.call_args.kwargs["body"]
        assert body["values"][0][:2] == ["wamid.1", "Jane Doe"]
        assert body["values"][0][6] == "booked"

    @pytest.mark.asyncio
    async def test_append_not_repeated_after_timeout(self, values, store):
        values.get.return_value.execute.return_value = {"values": [HEADER]}
        values.append.return_value.execute.side_effect = TimeoutError("read timed out")

        with pytest.raises(ExternalServiceError):
            await store.append(self.record())

        assert values.append.return_value.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_append_generates_missing_id(self, values, store):
        values.get.return_value.execute.return_value = {"values": [HEADER]}
        values.append.return_value.execute.return_value = {}

        stored = await store.append(self.record(id=""))

        assert stored.id
        assert stored.row_ref is None

    @pytest.mark.asyncio
    async def test_query_filters_and_numbers_rows(self, values, store):
        values.get.return_value.execute.side_effect = [
            {"values": [HEADER]},
            {
                "values": [
                    self.record().to_row(),
                    [],
                    self.record(id="2", patient_name="John", status="cancelled").to_row(),
                    self.record(id="3", appointment_date="2025-03-11").to_row()[:7],
                ]
            },
        ]

        records = await store.query(AppointmentFilter(statuses=("booked",)))

        assert [(r.id, r.row_ref) for r in records] == [("wamid.1", 2), ("3", 5)]
        assert records[1].calendar_event_id is None

    @pytest.mark.asyncio
    async def test_find_latest(self, values, store):
        values.get.return_value.execute.side_effect = [
            {"values": [HEADER]},
            {
                "values": [
                    self.record(id="late", appointment_date="2025-03-12").to_row(),
                    self.record(id="early").to_row(),
                ]
            },
        ]

        latest = await store.find_latest(AppointmentFilter(phone_number="15551112222"))

        assert latest.id == "late"

    @pytest.mark.asyncio
    async def test_update_rewrites_row(self, values, store):
        values.get.return_value.execute.side_effect = [
            {"values": [HEADER]},
            {"values": [self.record().to_row()]},
        ]

        updated = await store.update(4, {"status": "cancelled", "notes": "Cancelled by patient"})

        assert updated.status == "cancelled"
        assert updated.row_ref == 4
        call = values.update.call_args.kwargs
        assert call["range"] == "Appointments!A4:I4"
        assert call["body"]["values"][0][6] == "cancelled"
        assert call["body"]["values"][0][8] == "Cancelled by patient"

    @pytest.mark.asyncio
    async def test_update_empty_row(self, values, store):
        values.get.return_value.execute.side_effect = [{"values": [HEADER]}, {}]

        with pytest.raises(ExternalServiceError):
            await store.update(9, {"status": "cancelled"})

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, store):
        with pytest.raises(ValueError):
            await store.update(2, {"row_ref": 3})


class TestGoogleCalendarService:
    """Test calendar event operations."""

    @pytest.fixture
    def events(self):
        return MagicMock()

    @pytest.fixture
    def calendar(self, events):
        resource = MagicMock()
        resource.events.return_value = events
        return GoogleCalendarService(
            google=service_for(resource),
            calendar_id="cal-1",
            timezone="America/New_York",
        )

    @pytest.mark.asyncio
    async def test_create_event(self, calendar, events):
        events.insert.return_value.execute.return_value = {"id": "evt-9"}

        event_id = await calendar.create_event(
            CalendarEventArgs(
                summary="Appt: checkup - Jane Doe",
                description="Patient: Jane Doe",
                start=datetime(2025, 3, 10, 14, 0),
                end=datetime(2025, 3, 10, 15, 0),
            )
        )

        assert event_id == "evt-9"
        body = events.insert.call_args.kwargs["body"]
        assert body["start"] == {"dateTime": "2025-03-10T14:00:00", "timeZone": "America/New_York"}
        assert body["end"]["dateTime"] == "2025-03-10T15:00:00"
        assert events.insert.call_args.kwargs["calendarId"] == "cal-1"

    @pytest.mark.asyncio
    async def test_create_not_repeated_after_server_error(self, calendar, events):
        events.insert.return_value.execute.side_effect = http_error(502)

        with pytest.raises(ExternalServiceError):
            await calendar.create_event(
                CalendarEventArgs(
                    summary="Appt",
                    start=datetime(2025, 3, 10, 14, 0),
                    end=datetime(2025, 3, 10, 15, 0),
                )
            )

        assert events.insert.return_value.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_create_requires_times(self, calendar):
        with pytest.raises(ValueError):
            await calendar.create_event(CalendarEventArgs(summary="Appt"))

    @pytest.mark.asyncio
    async def test_update_patches_given_fields(self, calendar, events):
        await calendar.update_event("evt-1", CalendarEventArgs(summary="(RESCHEDULED) Appt"))

        call = events.patch.call_args.kwargs
        assert call["eventId"] == "evt-1"
        assert call["body"] == {"summary": "(RESCHEDULED) Appt"}

    @pytest.mark.asyncio
    async def test_delete_missing_event_succeeds(self, calendar, events):
        events.delete.return_value.execute.side_effect = http_error(410)

        await calendar.delete_event("evt-gone")

    @pytest.mark.asyncio
    async def test_delete_failure_raises(self, calendar, events):
        events.delete.return_value.execute.side_effect = http_error(403)

        with pytest.raises(ExternalServiceError):
            await calendar.delete_event("evt-1")

    @pytest.mark.asyncio
    async def test_list_events_follows_pages(self, calendar, events):
        events.list.return_value.execute.side_effect = [
            {
                "items": [
                    {
                        "id": "a",
                        "summary": "Appt: checkup - Jane",
                        "start": {"dateTime": "2025-03-10T14:00:00-04:00"},
                    }
                ],
                "nextPageToken": "page-2",
            },
            {"items": [{"id": "b", "start": {"date": "2025-03-11"}}]},
        ]

        result = await calendar.list_events(datetime(2025, 3, 10), datetime(2025, 3, 17))

        assert [e.id for e in result] == ["a", "b"]
        assert result[0].start == datetime(2025, 3, 10, 14, 0)
        assert result[1].start == datetime(2025, 3, 11)
        tokens = [c.kwargs["pageToken"] for c in events.list.call_args_list]
        assert tokens == [None, "page-2"]
        assert events.list.call_args_list[0].kwargs["timeMin"] == "2025-03-10T00:00:00-04:00"

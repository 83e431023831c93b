"""Shared fixtures and in-memory collaborators."""

from dataclasses import replace
from datetime import date, datetime
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from medimate.core.intelligence.intent.types import Intent, RecognitionResult, SenderRole
from medimate.core.intelligence.session.manager import ContextStore
from medimate.core.scheduling.datetime_resolver import DateTimeResolver
from medimate.core.scheduling.engine import DialogueOrchestrator
from medimate.core.scheduling.errors import ExternalServiceError
from medimate.core.scheduling.flow import ConversationFlow
from medimate.core.scheduling.models import (
    AppointmentFilter,
    AppointmentRecord,
    CalendarEvent,
    CalendarEventArgs,
)
from medimate.core.scheduling.pause import PauseWindowStore
from medimate.core.scheduling.response import ResponseGenerator
from medimate.infra.whatsapp import SendResult

# Monday, 08:00 clinic time
NOW = datetime(2025, 3, 3, 8, 0)
DOCTOR_ID = "15550000000"
PATIENT_ID = "15551112222"


class FakeAppointmentStore:
    """In-memory appointment ledger. row_ref is the 1-based sheet row."""

    def __init__(self, records: Optional[list[AppointmentRecord]] = None):
        self.records: list[AppointmentRecord] = []
        self.fail_append = False
        self.fail_update = False
        self.fail_query = False
        self.updates: list[tuple[int, dict]] = []
        for record in records or []:
            self.add(record)

    def add(self, record: AppointmentRecord) -> AppointmentRecord:
        stored = replace(record, row_ref=len(self.records) + 2)
        self.records.append(stored)
        return stored

    def by_row(self, row_ref: int) -> AppointmentRecord:
        return self.records[row_ref - 2]

    async def append(self, record: AppointmentRecord) -> AppointmentRecord:
        if self.fail_append:
            raise ExternalServiceError("sheets", "append_row failed (503)")
        return self.add(record)

    async def query(self, filter: AppointmentFilter) -> list[AppointmentRecord]:
        if self.fail_query:
            raise ExternalServiceError("sheets", "read_rows failed (503)")
        return [r for r in self.records if filter.matches(r)]

    async def find_latest(self, filter: AppointmentFilter) -> Optional[AppointmentRecord]:
        matches = await self.query(filter)
        return max(matches, key=lambda r: r.sort_key()) if matches else None

    async def update(self, row_ref: int, partial: dict) -> AppointmentRecord:
        if self.fail_update:
            raise ExternalServiceError("sheets", "update_row failed (503)")
        self.updates.append((row_ref, partial))
        updated = replace(self.by_row(row_ref), **partial)
        self.records[row_ref - 2] = updated
        return updated


class FakeCalendar:
    """In-memory calendar recording every call."""

    def __init__(self):
        self.events: dict[str, CalendarEventArgs] = {}
        self.listed: list[CalendarEvent] = []
        self.created: list[str] = []
        self.updated: list[tuple[str, CalendarEventArgs]] = []
        self.deleted: list[str] = []
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False
        self.fail_list = False

    @property
    def call_count(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    async def create_event(self, args: CalendarEventArgs) -> str:
        if self.fail_create:
            raise ExternalServiceError("calendar", "create_event failed (503)")
        event_id = f"evt-{len(self.created) + 1}"
        self.events[event_id] = args
        self.created.append(event_id)
        return event_id

    async def update_event(self, event_id: str, args: CalendarEventArgs) -> None:
        if self.fail_update:
            raise ExternalServiceError("calendar", "update_event failed (503)")
        self.updated.append((event_id, args))
        self.events[event_id] = args

    async def delete_event(self, event_id: str) -> None:
        if self.fail_delete:
            raise ExternalServiceError("calendar", "delete_event failed (503)")
        self.deleted.append(event_id)
        self.events.pop(event_id, None)

    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        if self.fail_list:
            raise ExternalServiceError("calendar", "list_events failed (503)")
        return [e for e in self.listed if e.start is None or start <= e.start < end]


class FakeMessenger:
    """Records outbound messages."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def send(self, recipient: str, text: str) -> SendResult:
        if self.fail:
            return SendResult(success=False, error="HTTP 401: invalid token")
        self.sent.append((recipient, text))
        return SendResult(success=True, message_id=f"wamid.{len(self.sent)}")


class FakeRecognizer:
    """Returns scripted recognition results keyed by message text."""

    def __init__(self):
        self.script: dict[str, RecognitionResult] = {}
        self.calls: list[tuple[str, SenderRole, Optional[str]]] = []

    def on(self, text: str, intent: Intent, **entities) -> "FakeRecognizer":
        self.script[text] = RecognitionResult(intent=intent, entities=entities)
        return self

    async def recognize(
        self,
        message: str,
        sender_role: SenderRole,
        contextual_date: Optional[str] = None,
        today: Optional[date] = None,
    ) -> RecognitionResult:
        self.calls.append((message, sender_role, contextual_date))
        scripted = self.script.get(message)
        if scripted is None:
            return RecognitionResult(intent=Intent.OTHER)
        return RecognitionResult(intent=scripted.intent, entities=dict(scripted.entities))


def booked(
    patient_name: str,
    phone_number: str,
    appointment_date: str,
    appointment_time: str,
    reason: str = "Checkup",
    status: str = "booked",
    calendar_event_id: Optional[str] = "evt-existing",
) -> AppointmentRecord:
    """Build a stored appointment record."""
    return AppointmentRecord(
        id=f"{patient_name}-{appointment_date}-{appointment_time}",
        patient_name=patient_name,
        phone_number=phone_number,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        reason=reason,
        status=status,
        calendar_event_id=calendar_event_id,
    )


@pytest.fixture(autouse=True)
def no_redis():
    """Keep conversation context in memory unless a test patches Redis itself."""
    with patch(
        "medimate.core.intelligence.session.manager.get_redis",
        AsyncMock(return_value=None),
    ):
        yield


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def appointment_store():
    return FakeAppointmentStore()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def recognizer():
    return FakeRecognizer()


@pytest.fixture
def pause_store():
    return PauseWindowStore(today=lambda: NOW.date())


@pytest.fixture
def context_store():
    return ContextStore(ttl_seconds=3600)


@pytest.fixture
def claude_client():
    """Claude client whose replies are scripted per test."""
    client = MagicMock()
    client.generate = AsyncMock(return_value=MagicMock(content="Happy to help with your appointment."))
    return client


@pytest.fixture
def responses(claude_client):
    return ResponseGenerator(claude_client=claude_client, open_hour=9, close_hour=17)


@pytest.fixture
def orchestrator(
    recognizer,
    context_store,
    appointment_store,
    calendar,
    messenger,
    pause_store,
    responses,
    clock,
):
    return DialogueOrchestrator(
        recognizer=recognizer,
        context_store=context_store,
        appointment_store=appointment_store,
        calendar=calendar,
        messenger=messenger,
        pause_store=pause_store,
        responses=responses,
        flow=ConversationFlow(),
        resolver=DateTimeResolver(),
        clock=clock,
        doctor_id=DOCTOR_ID,
        max_parse_failures=3,
        appointment_duration_minutes=60,
    )

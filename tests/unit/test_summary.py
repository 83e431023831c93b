"""Tests for the doctor's daily summary."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from medimate.core.scheduling.errors import ExternalServiceError
from medimate.core.scheduling.summary import DailySummaryService, plain_summary
from medimate.infra.claude import ClaudeClientError
from tests.conftest import DOCTOR_ID, PATIENT_ID, booked


class TestDailySummary:
    """Test building and sending the summary."""

    @pytest.fixture
    def service(self, appointment_store, messenger, claude_client, clock):
        return DailySummaryService(
            appointment_store=appointment_store,
            messenger=messenger,
            claude_client=claude_client,
            clock=clock,
            doctor_id=DOCTOR_ID,
        )

    @pytest.fixture
    def todays_appointments(self, appointment_store):
        appointment_store.add(booked("Late Patient", PATIENT_ID, "2025-03-03", "15:00", "follow-up"))
        appointment_store.add(booked("Early Patient", PATIENT_ID, "2025-03-03", "09:30", "checkup"))
        appointment_store.add(booked("Gone", PATIENT_ID, "2025-03-03", "11:00", status="cancelled"))
        appointment_store.add(booked("Tomorrow", PATIENT_ID, "2025-03-04", "10:00"))

    @pytest.mark.asyncio
    async def test_no_appointments(self, service, messenger, claude_client):
        result = await service.send_daily_summary()

        assert result.sent
        assert result.appointment_count == 0
        assert messenger.sent == [
            (
                DOCTOR_ID,
                "Good morning, Doctor! There are no appointments scheduled for today, "
                "Monday, March 3, 2025.",
            )
        ]
        claude_client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_llm_body_for_booked_only(self, service, messenger, claude_client, todays_appointments):
        claude_client.generate.return_value = MagicMock(content="09:30 - Early Patient (checkup)")

        result = await service.send_daily_summary()

        assert result.appointment_count == 2
        assert messenger.sent[0][1].startswith(
            "Good morning, Doctor! Here is your summary for today, Monday, March 3, 2025:"
        )
        prompt = claude_client.generate.call_args.kwargs["prompt"]
        assert prompt.index("09:30 | Early Patient") < prompt.index("15:00 | Late Patient")
        assert "Gone" not in prompt
        assert "Tomorrow" not in prompt

    @pytest.mark.asyncio
    async def test_plain_list_when_llm_fails(self, service, messenger, claude_client, todays_appointments):
        claude_client.generate = AsyncMock(side_effect=ClaudeClientError("All models failed"))

        result = await service.send_daily_summary()

        assert result.sent
        assert "09:30 - Early Patient (checkup)\n15:00 - Late Patient (follow-up)" in result.message
        assert result.message.endswith("Total: 2 appointment(s).")

    @pytest.mark.asyncio
    async def test_send_failure_reported(self, service, messenger):
        messenger.fail = True

        result = await service.send_daily_summary()

        assert not result.sent
        assert result.error == "HTTP 401: invalid token"
        assert result.to_dict()["error"] == "HTTP 401: invalid token"

    @pytest.mark.asyncio
    async def test_ledger_failure_propagates(self, service, appointment_store, messenger):
        appointment_store.fail_query = True

        with pytest.raises(ExternalServiceError):
            await service.send_daily_summary()

        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_requires_doctor_number(self, appointment_store, messenger, claude_client, clock):
        service = DailySummaryService(
            appointment_store=appointment_store,
            messenger=messenger,
            claude_client=claude_client,
            clock=clock,
            doctor_id="",
        )

        with pytest.raises(ValueError):
            await service.send_daily_summary()

    def test_plain_summary_without_reason(self):
        record = booked("Jane", PATIENT_ID, "2025-03-03", "10:00", reason="")

        assert plain_summary([record]) == "10:00 - Jane (no reason given)\n\nTotal: 1 appointment(s)."

"""Tests for LLM intent recognition."""

import pytest
from unittest.mock import AsyncMock
from dataclasses import dataclass
from datetime import date

from medimate.core.intelligence.intent.recognizer import IntentRecognizer
from medimate.core.intelligence.intent.types import Intent, SenderRole
from medimate.infra.claude import ClaudeClientError


@dataclass
class MockClaudeResponse:
    """Mock Claude response."""
    content: str
    model: str = "claude-3-5-haiku-20241022"
    input_tokens: int = 100
    output_tokens: int = 50
    stop_reason: str = "end_turn"
    latency_ms: float = 50.0


class TestIntentRecognizer:
    """Test LLM-based intent recognizer."""

    @pytest.fixture
    def mock_claude_client(self):
        """Mock Claude client."""
        return AsyncMock()

    @pytest.fixture
    def recognizer(self, mock_claude_client):
        """Create recognizer with mock client."""
        return IntentRecognizer(claude_client=mock_claude_client)

    def _mock_response(self, mock_client, json_response: str):
        """Helper to mock Claude response."""
        mock_client.generate.return_value = MockClaudeResponse(content=json_response)

    @pytest.mark.asyncio
    async def test_booking_with_entities(self, recognizer, mock_claude_client):
        self._mock_response(
            mock_claude_client,
            '''
            {
                "intent": "book_appointment",
                "entities": {"date": "2025-03-10", "time": "14:00", "reason": "tooth cleaning"}
            }
            ''',
        )

        result = await recognizer.recognize(
            "I'd like a tooth cleaning next Monday at 2pm",
            SenderRole.PATIENT,
            today=date(2025, 3, 3),
        )

        assert result.intent == Intent.BOOK_APPOINTMENT
        assert result.entities["reason"] == "tooth cleaning"
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_prompt_carries_role_today_and_context(self, recognizer, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "other", "entities": {}}')

        await recognizer.recognize(
            "/pause bookings",
            SenderRole.DOCTOR,
            contextual_date="2025-03-10",
            today=date(2025, 3, 3),
        )

        prompt = mock_claude_client.generate.call_args.kwargs["prompt"]
        assert "The message is from a doctor." in prompt
        assert "Today's date: 2025-03-03" in prompt
        assert "Date already discussed in this conversation: 2025-03-10" in prompt
        assert '"/pause bookings"' in prompt
        assert mock_claude_client.generate.call_args.kwargs["temperature"] == 0

    @pytest.mark.asyncio
    async def test_markdown_fence_stripped(self, recognizer, mock_claude_client):
        self._mock_response(
            mock_claude_client,
            '```json\n{"intent": "pause_bookings", "entities": {"start_date": "2025-03-05"}}\n```',
        )

        result = await recognizer.recognize("/pause bookings on the 5th", SenderRole.DOCTOR)

        assert result.intent == Intent.PAUSE_BOOKINGS
        assert result.entities == {"start_date": "2025-03-05"}

    @pytest.mark.asyncio
    async def test_invalid_json_degrades(self, recognizer, mock_claude_client):
        self._mock_response(mock_claude_client, "Sure! The intent is booking.")

        result = await recognizer.recognize("book me in", SenderRole.PATIENT)

        assert result.intent == Intent.OTHER
        assert result.degraded
        assert result.raw_response == "Sure! The intent is booking."

    @pytest.mark.asyncio
    async def test_unknown_label_degrades(self, recognizer, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "order_pizza", "entities": {}}')

        result = await recognizer.recognize("pizza please", SenderRole.PATIENT)

        assert result.intent == Intent.OTHER
        assert result.degraded

    @pytest.mark.asyncio
    async def test_non_dict_entities_dropped(self, recognizer, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": "greeting", "entities": ["hi"]}')

        result = await recognizer.recognize("hi", SenderRole.PATIENT)

        assert result.intent == Intent.GREETING
        assert result.entities == {}

    @pytest.mark.asyncio
    async def test_label_case_normalized(self, recognizer, mock_claude_client):
        self._mock_response(mock_claude_client, '{"intent": " Thank_You "}')

        result = await recognizer.recognize("thanks!", SenderRole.PATIENT)

        assert result.intent == Intent.THANK_YOU

    @pytest.mark.asyncio
    async def test_api_error_degrades(self, recognizer, mock_claude_client):
        mock_claude_client.generate.side_effect = ClaudeClientError("All models failed")

        result = await recognizer.recognize("book me in", SenderRole.PATIENT)

        assert result.intent == Intent.OTHER
        assert result.degraded

    @pytest.mark.asyncio
    async def test_empty_message_skips_model(self, recognizer, mock_claude_client):
        result = await recognizer.recognize("   ", SenderRole.PATIENT)

        assert result.intent == Intent.OTHER
        assert not result.degraded
        mock_claude_client.generate.assert_not_called()

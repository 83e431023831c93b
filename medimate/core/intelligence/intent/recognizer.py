"""
LLM-based intent and entity recognition using Claude.

The model returns an intent label and a flat entity bag. Anything missing or
malformed degrades to Intent.OTHER rather than raising.
"""

import json
import logging
import time
from datetime import date
from typing import Optional

from medimate.config import settings
from medimate.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from .types import Intent, RecognitionResult, SenderRole

logger = logging.getLogger(__name__)


RECOGNITION_PROMPT = """You are a WhatsApp bot for a doctor's clinic. Identify the intent of the message and extract entities.
The message is from a {sender_role}.

Today's date: {today}
{context}

## Patient intents

- book_appointment: wants to schedule a new appointment.
  Entities: {{"date": "YYYY-MM-DD", "time": "HH:MM" (24h) or "h:mm a", "reason": "visit reason"}}
  "I'd like a tooth cleaning next Monday at 2pm" -> {{"intent": "book_appointment", "entities": {{"date": "<next Monday>", "time": "14:00", "reason": "tooth cleaning"}}}}
- reschedule_appointment: wants to move an existing appointment. Entities are for the NEW time.
  Entities: {{"date": "YYYY-MM-DD", "time": "HH:MM"}}
- cancel_appointment: wants to cancel their appointment. Entities: {{}}
- greeting: "Hello", "Hi". Entities: {{}}
- thank_you: "Thanks". Entities: {{}}
- faq_opening_hours: asks about clinic hours. Entities: {{}}

## Doctor commands (sender is the doctor, message usually starts with '/')

- "/pause bookings from 2024-08-01 to 2024-08-05" -> {{"intent": "pause_bookings", "entities": {{"start_date": "2024-08-01", "end_date": "2024-08-05"}}}}
  end_date is optional; "/pause bookings" alone has no entities.
- "/resume bookings" -> {{"intent": "resume_bookings", "entities": {{}}}}
- "/cancel all meetings today" -> {{"intent": "cancel_all_meetings_today", "entities": {{}}}}
- "/cancel John Doe appointment" -> {{"intent": "cancel_appointment", "entities": {{"patient_name": "John Doe"}}}}
  If a date is mentioned add "date"; "for today" -> "date": "today".
- "/reschedule Jane Smith to 2024-08-10 at 3pm" -> {{"intent": "reschedule_appointment", "entities": {{"patient_name": "Jane Smith", "date": "2024-08-10", "time": "15:00"}}}}

## Rules

- If no intent fits, use "other".
- Prefer doctor commands when the message starts with '/'.
- Resolve relative dates ("tomorrow", "next Monday") to YYYY-MM-DD using today's date.
- If the year is omitted, assume the current year, or next year if the date has passed.
- Convert times to HH:MM (24-hour) when possible; keep the original text if ambiguous.
- Only include entities that are present in the message.

## Message

"{message}"

Respond with ONLY valid JSON:
{{"intent": "<intent>", "entities": {{...}}}}"""


class IntentRecognizer:
    """
    LLM-based intent recognizer using Claude.

    Any failure (API error, bad JSON, unknown label) degrades to OTHER so the
    conversation can continue with a free-form reply.
    """

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize recognizer.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def recognize(
        self,
        message: str,
        sender_role: SenderRole,
        contextual_date: Optional[str] = None,
        today: Optional[date] = None,
    ) -> RecognitionResult:
        """
        Recognize the intent and entities of a message.

        Args:
            message: Inbound message text
            sender_role: Patient or doctor
            contextual_date: Date previously discussed in this conversation
            today: Clinic's current date (for relative dates)

        Returns:
            RecognitionResult (degraded=True when falling back to OTHER)
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return RecognitionResult(intent=Intent.OTHER)

        context = ""
        if contextual_date:
            context = f"Date already discussed in this conversation: {contextual_date}"

        prompt = RECOGNITION_PROMPT.format(
            sender_role=sender_role.value,
            today=(today or date.today()).isoformat(),
            context=context,
            message=message,
        )

        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=prompt,
                model=settings.claude_intent_model,
                max_tokens=300,
                temperature=0,
            )
            result = self._parse_response(response.content)
        except ClaudeClientError as e:
            logger.error(f"Intent recognition failed: {e}")
            result = RecognitionResult(intent=Intent.OTHER, degraded=True)

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.debug(
            f"Recognized intent: {result.intent.value} entities={result.entities} "
            f"degraded={result.degraded}"
        )
        return result

    def _parse_response(self, response: str) -> RecognitionResult:
        """Parse LLM JSON response."""
        # Clean markdown if present
        response = response.strip()
        if response.startswith("```"):
            lines = response.split("\n")
            lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            response = "\n".join(lines)
        response = response.strip()

        try:
            data = json.loads(response)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse: {e}\nResponse: {response}")
            return RecognitionResult(intent=Intent.OTHER, degraded=True, raw_response=response)

        if not isinstance(data, dict):
            return RecognitionResult(intent=Intent.OTHER, degraded=True, raw_response=response)

        intent_str = str(data.get("intent") or "other").strip().lower()
        degraded = False
        try:
            intent = Intent(intent_str)
        except ValueError:
            logger.warning(f"Unknown intent label from model: {intent_str!r}")
            intent = Intent.OTHER
            degraded = True

        entities = data.get("entities")
        if not isinstance(entities, dict):
            entities = {}

        return RecognitionResult(
            intent=intent,
            entities=entities,
            degraded=degraded,
            raw_response=response,
        )


# Singleton
_recognizer: Optional[IntentRecognizer] = None


async def get_intent_recognizer() -> IntentRecognizer:
    """Get singleton IntentRecognizer."""
    global _recognizer
    if _recognizer is None:
        _recognizer = IntentRecognizer()
    return _recognizer

"""Intent types for message recognition."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Intent(str, Enum):
    """Recognized message intents."""

    # Patient scheduling actions (doctors may use them with a patient name)
    BOOK_APPOINTMENT = "book_appointment"
    RESCHEDULE_APPOINTMENT = "reschedule_appointment"
    CANCEL_APPOINTMENT = "cancel_appointment"

    # Doctor commands
    PAUSE_BOOKINGS = "pause_bookings"
    RESUME_BOOKINGS = "resume_bookings"
    CANCEL_ALL_MEETINGS_TODAY = "cancel_all_meetings_today"

    # Small talk
    GREETING = "greeting"
    THANK_YOU = "thank_you"
    FAQ_OPENING_HOURS = "faq_opening_hours"

    # Fallback
    OTHER = "other"

    @property
    def is_doctor_only(self) -> bool:
        return self in DOCTOR_ONLY_INTENTS

    @property
    def is_aside(self) -> bool:
        """Intents answered without touching an open booking flow."""
        return self in ASIDE_INTENTS


DOCTOR_ONLY_INTENTS = frozenset({
    Intent.PAUSE_BOOKINGS,
    Intent.RESUME_BOOKINGS,
    Intent.CANCEL_ALL_MEETINGS_TODAY,
})

ASIDE_INTENTS = frozenset({
    Intent.GREETING,
    Intent.THANK_YOU,
    Intent.FAQ_OPENING_HOURS,
})


class SenderRole(str, Enum):
    """Who sent the message."""

    PATIENT = "patient"
    DOCTOR = "doctor"


@dataclass
class RecognitionResult:
    """Result of intent recognition."""

    intent: Intent
    entities: dict[str, Any] = field(default_factory=dict)

    # True when the model output was missing or unusable and we fell back to OTHER
    degraded: bool = False

    # Raw LLM output for debugging
    raw_response: Optional[str] = None

    processing_time_ms: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intent": self.intent.value,
            "entities": self.entities,
            "degraded": self.degraded,
            "processing_time_ms": self.processing_time_ms,
        }

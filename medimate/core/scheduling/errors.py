"""Error taxonomy for the booking decision engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Why a turn did not commit."""

    # Expected, user-facing outcomes
    PARSE_FAILURE = "parse_failure"
    PAST_TIME = "past_time"
    OUTSIDE_HOURS = "outside_hours"
    BOOKING_PAUSED = "booking_paused"
    SLOT_CONFLICT = "slot_conflict"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"

    # Infrastructure
    EXTERNAL_FAILURE = "external_failure"
    RECOGNIZER_FAILURE = "recognizer_failure"

    @property
    def is_user_facing(self) -> bool:
        """True for outcomes that are corrective replies, not faults."""
        return self not in {ErrorKind.EXTERNAL_FAILURE, ErrorKind.RECOGNIZER_FAILURE}


@dataclass(frozen=True)
class RuleViolation:
    """A scheduling rule rejected the candidate."""

    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)


class ExternalServiceError(Exception):
    """Raised when the appointment store, calendar or messaging call fails."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class InvalidPauseWindow(ValueError):
    """Raised when a pause is requested with start after end."""
    pass

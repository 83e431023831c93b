"""
Typed entity records.

The recognizer hands back a loose dict. It is validated here, once, into a
per-intent record so the rest of the engine never touches raw keys.
"""

from dataclasses import dataclass, fields
from typing import Any, Optional, Union

from medimate.core.intelligence.intent.types import Intent

# Values the model sometimes emits instead of omitting a key
_EMPTY_MARKERS = {"", "null", "none", "n/a", "unknown"}


def _clean(value: Any) -> Optional[str]:
    """Normalize one entity value to a stripped string or None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS:
        return None
    return text


@dataclass
class BookingEntities:
    """Entities for book_appointment."""

    date: Optional[str] = None
    time: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class RescheduleEntities:
    """Entities for reschedule_appointment (date/time are the new slot)."""

    date: Optional[str] = None
    time: Optional[str] = None
    patient_name: Optional[str] = None


@dataclass
class CancelEntities:
    """Entities for cancel_appointment.

    date may be the literal "today".
    """

    patient_name: Optional[str] = None
    date: Optional[str] = None


@dataclass
class PauseEntities:
    """Entities for pause_bookings."""

    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass
class FreeformEntities:
    """Entities for intents that carry slot fragments we may still use.

    A message labelled "other" or "greeting" can still contain a date or
    time answering an open question.
    """

    date: Optional[str] = None
    time: Optional[str] = None
    reason: Optional[str] = None
    patient_name: Optional[str] = None


Entities = Union[
    BookingEntities,
    RescheduleEntities,
    CancelEntities,
    PauseEntities,
    FreeformEntities,
]

ENTITY_TYPES: dict[Intent, type] = {
    Intent.BOOK_APPOINTMENT: BookingEntities,
    Intent.RESCHEDULE_APPOINTMENT: RescheduleEntities,
    Intent.CANCEL_APPOINTMENT: CancelEntities,
    Intent.PAUSE_BOOKINGS: PauseEntities,
}


def parse_entities(intent: Intent, raw: Optional[dict]) -> Entities:
    """
    Validate a raw entity bag into the record for an intent.

    Unknown keys are dropped, values are stripped strings, and empty or
    placeholder values become None.

    Args:
        intent: Recognized intent
        raw: Entity dict from the recognizer (may be None or malformed)

    Returns:
        Typed entity record
    """
    entity_type = ENTITY_TYPES.get(intent, FreeformEntities)
    if not isinstance(raw, dict):
        return entity_type()

    values = {}
    for f in fields(entity_type):
        values[f.name] = _clean(raw.get(f.name))
    return entity_type(**values)

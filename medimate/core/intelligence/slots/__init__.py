"""Typed entity records."""

from .types import (
    BookingEntities,
    RescheduleEntities,
    CancelEntities,
    PauseEntities,
    FreeformEntities,
    Entities,
    parse_entities,
)

__all__ = [
    "BookingEntities",
    "RescheduleEntities",
    "CancelEntities",
    "PauseEntities",
    "FreeformEntities",
    "Entities",
    "parse_entities",
]

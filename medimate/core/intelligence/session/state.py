"""Slot-filling state machine."""

from enum import Enum
from typing import Optional, Set


class FlowState(str, Enum):
    """States in a conversation's slot-filling flow."""

    # Initial
    IDLE = "idle"

    # Booking
    BOOKING_AWAITING_DATE = "booking_awaiting_date"
    BOOKING_AWAITING_TIME = "booking_awaiting_time"
    BOOKING_AWAITING_REASON = "booking_awaiting_reason"

    # Rescheduling
    RESCHEDULING_AWAITING_TARGET = "rescheduling_awaiting_target"
    RESCHEDULING_AWAITING_NEW_DATETIME = "rescheduling_awaiting_new_datetime"

    # Flow finished (context is cleared right after)
    TERMINAL = "terminal"


class ActiveFlow(str, Enum):
    """Which top-level flow the conversation is in (last_intent)."""

    IDLE = "idle"
    BOOKING = "booking"
    RESCHEDULING = "rescheduling"
    QUERYING_AVAILABILITY = "querying_availability"


BOOKING_STATES = frozenset({
    FlowState.BOOKING_AWAITING_DATE,
    FlowState.BOOKING_AWAITING_TIME,
    FlowState.BOOKING_AWAITING_REASON,
})

RESCHEDULING_STATES = frozenset({
    FlowState.RESCHEDULING_AWAITING_TARGET,
    FlowState.RESCHEDULING_AWAITING_NEW_DATETIME,
})

_LEAVE = {FlowState.IDLE, FlowState.TERMINAL}

# Valid state transitions
VALID_TRANSITIONS: dict[FlowState, Set[FlowState]] = {
    FlowState.IDLE: set(BOOKING_STATES | RESCHEDULING_STATES | _LEAVE),
    FlowState.BOOKING_AWAITING_DATE: set(BOOKING_STATES | RESCHEDULING_STATES | _LEAVE),
    FlowState.BOOKING_AWAITING_TIME: set(BOOKING_STATES | RESCHEDULING_STATES | _LEAVE),
    FlowState.BOOKING_AWAITING_REASON: set(BOOKING_STATES | RESCHEDULING_STATES | _LEAVE),
    FlowState.RESCHEDULING_AWAITING_TARGET: set(BOOKING_STATES | RESCHEDULING_STATES | _LEAVE),
    FlowState.RESCHEDULING_AWAITING_NEW_DATETIME: set(
        BOOKING_STATES | RESCHEDULING_STATES | _LEAVE
    ),
    FlowState.TERMINAL: {FlowState.IDLE},
}

# Slot each state is waiting for
AWAITED_SLOT: dict[FlowState, str] = {
    FlowState.BOOKING_AWAITING_DATE: "date",
    FlowState.BOOKING_AWAITING_TIME: "time",
    FlowState.BOOKING_AWAITING_REASON: "reason",
    FlowState.RESCHEDULING_AWAITING_TARGET: "patient_name",
    FlowState.RESCHEDULING_AWAITING_NEW_DATETIME: "datetime",
}


def can_transition(from_state: FlowState, to_state: FlowState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def is_collecting_state(state: FlowState) -> bool:
    """Check if state is waiting for a slot."""
    return state in BOOKING_STATES or state in RESCHEDULING_STATES


def awaited_slot(state: FlowState) -> Optional[str]:
    return AWAITED_SLOT.get(state)


def flow_for_state(state: FlowState) -> ActiveFlow:
    if state in BOOKING_STATES:
        return ActiveFlow.BOOKING
    if state in RESCHEDULING_STATES:
        return ActiveFlow.RESCHEDULING
    return ActiveFlow.IDLE

"""Conversation context stored per sender."""

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from .state import (
    ActiveFlow,
    FlowState,
    awaited_slot,
    can_transition,
    flow_for_state,
    is_collecting_state,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class ConversationContext:
    """
    Slot-filling memory for one sender.

    Holds whatever has been gathered for the single open flow. Fields are
    plain strings so the context round-trips through JSON unchanged.
    """

    sender_id: str
    last_intent: ActiveFlow = ActiveFlow.IDLE
    state: FlowState = FlowState.IDLE

    # Booking slots (date as YYYY-MM-DD, time as given by the sender)
    gathered_date: Optional[str] = None
    gathered_time: Optional[str] = None
    gathered_reason: Optional[str] = None

    # Last date mentioned, handed to the recognizer for relative phrases
    contextual_date: Optional[str] = None

    # Rescheduling slots
    reschedule_new_date: Optional[str] = None
    reschedule_new_time: Optional[str] = None
    reschedule_patient_name: Optional[str] = None

    # Consecutive parse failures for one slot
    parse_failures: int = 0
    failed_slot: Optional[str] = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_open(self) -> bool:
        """True while a flow is waiting for a slot."""
        return is_collecting_state(self.state)

    @property
    def awaited_slot(self) -> Optional[str]:
        return awaited_slot(self.state)

    def transition_to(self, new_state: FlowState) -> bool:
        """
        Move to a new state.

        Returns:
            False (and leaves the state alone) if the transition is invalid
        """
        if new_state == self.state:
            return True
        if not can_transition(self.state, new_state):
            logger.warning(
                f"Invalid transition for {self.sender_id}: "
                f"{self.state.value} -> {new_state.value}"
            )
            return False

        self.state = new_state
        if is_collecting_state(new_state):
            self.last_intent = flow_for_state(new_state)
        return True

    def record_parse_failure(self, slot: str) -> int:
        """Count a parse failure; a different slot restarts the count."""
        if self.failed_slot == slot:
            self.parse_failures += 1
        else:
            self.failed_slot = slot
            self.parse_failures = 1
        return self.parse_failures

    def clear_parse_failures(self) -> None:
        self.parse_failures = 0
        self.failed_slot = None

    def clear_booking(self) -> None:
        self.gathered_date = None
        self.gathered_time = None
        self.gathered_reason = None

    def clear_reschedule(self) -> None:
        self.reschedule_new_date = None
        self.reschedule_new_time = None
        self.reschedule_patient_name = None

    def reset(self) -> None:
        """Drop the open flow and everything gathered for it."""
        self.clear_booking()
        self.clear_reschedule()
        self.clear_parse_failures()
        self.state = FlowState.IDLE
        self.last_intent = ActiveFlow.IDLE

    def copy(self) -> "ConversationContext":
        """Working copy for one turn."""
        return replace(self)

    def to_json(self) -> str:
        """Convert to JSON string for Redis storage."""
        data = {
            "sender_id": self.sender_id,
            "last_intent": self.last_intent.value,
            "state": self.state.value,
            "gathered_date": self.gathered_date,
            "gathered_time": self.gathered_time,
            "gathered_reason": self.gathered_reason,
            "contextual_date": self.contextual_date,
            "reschedule_new_date": self.reschedule_new_date,
            "reschedule_new_time": self.reschedule_new_time,
            "reschedule_patient_name": self.reschedule_patient_name,
            "parse_failures": self.parse_failures,
            "failed_slot": self.failed_slot,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        return json.dumps(data)

    @classmethod
    def from_json(cls, json_str: str) -> "ConversationContext":
        """Create from JSON string."""
        data = json.loads(json_str)
        return cls(
            sender_id=data["sender_id"],
            last_intent=ActiveFlow(data.get("last_intent", ActiveFlow.IDLE.value)),
            state=FlowState(data.get("state", FlowState.IDLE.value)),
            gathered_date=data.get("gathered_date"),
            gathered_time=data.get("gathered_time"),
            gathered_reason=data.get("gathered_reason"),
            contextual_date=data.get("contextual_date"),
            reschedule_new_date=data.get("reschedule_new_date"),
            reschedule_new_time=data.get("reschedule_new_time"),
            reschedule_patient_name=data.get("reschedule_patient_name"),
            parse_failures=data.get("parse_failures", 0),
            failed_slot=data.get("failed_slot"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

"""
Conversation Flow Manager.

Decides how a recognized turn relates to the sender's open flow: whether
it continues it, is an aside, or starts something new. Also owns the
slot merge rules and the order in which slots are asked for.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from medimate.core.intelligence.intent.types import Intent
from medimate.core.intelligence.session.models import ConversationContext
from medimate.core.intelligence.session.state import ActiveFlow, FlowState
from medimate.core.intelligence.slots.types import (
    BookingEntities,
    Entities,
    FreeformEntities,
    RescheduleEntities,
)
from .datetime_resolver import looks_like_time, parse_date

logger = logging.getLogger(__name__)

# Top-level commands and the flow each one belongs to
COMMAND_FLOWS: dict[Intent, ActiveFlow] = {
    Intent.BOOK_APPOINTMENT: ActiveFlow.BOOKING,
    Intent.RESCHEDULE_APPOINTMENT: ActiveFlow.RESCHEDULING,
    Intent.CANCEL_APPOINTMENT: ActiveFlow.IDLE,
    Intent.PAUSE_BOOKINGS: ActiveFlow.IDLE,
    Intent.RESUME_BOOKINGS: ActiveFlow.IDLE,
    Intent.CANCEL_ALL_MEETINGS_TODAY: ActiveFlow.IDLE,
}

FLOW_INTENTS: dict[ActiveFlow, Intent] = {
    ActiveFlow.BOOKING: Intent.BOOK_APPOINTMENT,
    ActiveFlow.RESCHEDULING: Intent.RESCHEDULE_APPOINTMENT,
}

# Longest reply still read as an answer to a date or time prompt
ANSWER_MAX_WORDS = 4

DATE_WORDS = re.compile(
    r"\d{1,2}[/-]\d{1,2}|\d{4}|\d+(?:st|nd|rd|th)\b"
    r"|\b(?:today|tomorrow|next|week|\w+day"
    r"|jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|june?|july?|aug(?:ust)?"
    r"|sept?(?:ember)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\b",
    re.IGNORECASE,
)

TIME_WORDS = re.compile(
    r"\d|\b(?:am|pm|noon|midnight|morning|afternoon|evening|o'?clock)\b",
    re.IGNORECASE,
)


def reads_as(slot: str, text: str) -> bool:
    """True when a short reply looks like an attempt at a date or a time."""
    if not text or text.endswith("?") or len(text.split()) > ANSWER_MAX_WORDS:
        return False
    pattern = DATE_WORDS if slot == "date" else TIME_WORDS
    return bool(pattern.search(text))


@dataclass
class FlowTurn:
    """How the orchestrator should treat one turn."""

    intent: Intent
    entities: Entities
    relabelled: bool = False  # "other" reinterpreted as the open flow's intent
    aside: bool = False  # Answer without touching the open flow


class ConversationFlow:
    """
    Slot-filling rules for booking and rescheduling.

    Booking asks for date, then time, then reason. Rescheduling asks for
    the target patient (doctor only), then the new date and time.
    """

    def interpret(
        self,
        context: ConversationContext,
        intent: Intent,
        entities: Entities,
        message_text: str,
    ) -> FlowTurn:
        """Relate a recognized turn to the open flow.

        Args:
            context: Sender's conversation context
            intent: Recognized intent
            entities: Typed entities for that intent
            message_text: Raw message (used when the recognizer found nothing)

        Returns:
            FlowTurn
        """
        if intent.is_aside:
            return FlowTurn(intent, entities, aside=context.is_open)

        if intent == Intent.OTHER and context.is_open:
            recovered = self._recover_awaited(context, entities, message_text)
            if recovered is not None:
                open_intent = FLOW_INTENTS[context.last_intent]
                logger.debug(
                    f"Relabelling 'other' as {open_intent.value} for {context.sender_id} "
                    f"(awaiting {context.awaited_slot})"
                )
                return FlowTurn(open_intent, recovered, relabelled=True)
            return FlowTurn(intent, entities, aside=True)

        return FlowTurn(intent, entities)

    def starts_new_flow(self, context: ConversationContext, intent: Intent) -> bool:
        """True when a top-level command is unrelated to the open flow."""
        if not context.is_open or intent not in COMMAND_FLOWS:
            return False
        return COMMAND_FLOWS[intent] != context.last_intent

    def _recover_awaited(
        self,
        context: ConversationContext,
        entities: Entities,
        message_text: str,
    ) -> Optional[Entities]:
        """Find the awaited slot in the entities, or failing that, the raw text."""
        slot = context.awaited_slot
        text = (message_text or "").strip()
        loose = entities if isinstance(entities, FreeformEntities) else FreeformEntities()

        if context.last_intent == ActiveFlow.BOOKING:
            if slot and getattr(loose, slot, None):
                return BookingEntities(date=loose.date, time=loose.time, reason=loose.reason)
            if not text:
                return None
            if slot == "date" and parse_date(text) is not None:
                return BookingEntities(date=text)
            if slot == "time" and looks_like_time(text):
                return BookingEntities(time=text)
            # Unparseable attempts still go to the engine so they count as failures
            if slot == "date" and reads_as("date", text):
                return BookingEntities(date=text)
            if slot == "time" and reads_as("time", text):
                return BookingEntities(time=text)
            if slot == "reason":
                return BookingEntities(reason=text)
            return None

        if context.last_intent == ActiveFlow.RESCHEDULING:
            if slot == "patient_name":
                name = loose.patient_name or text
                if not name:
                    return None
                return RescheduleEntities(patient_name=name, date=loose.date, time=loose.time)
            if slot == "datetime":
                if loose.date or loose.time:
                    return RescheduleEntities(date=loose.date, time=loose.time)
                if text and parse_date(text) is not None:
                    return RescheduleEntities(date=text)
                if looks_like_time(text):
                    return RescheduleEntities(time=text)
                if reads_as("date", text):
                    return RescheduleEntities(date=text)
                if reads_as("time", text):
                    return RescheduleEntities(time=text)
            return None

        return None

    def merge_booking(self, context: ConversationContext, entities: BookingEntities) -> None:
        """Fill booking slots that are still empty (first write wins)."""
        if context.gathered_date is None and entities.date:
            context.gathered_date = entities.date
        if context.gathered_time is None and entities.time:
            context.gathered_time = entities.time
        if context.gathered_reason is None and entities.reason:
            context.gathered_reason = entities.reason

    def merge_reschedule(
        self,
        context: ConversationContext,
        entities: RescheduleEntities,
    ) -> None:
        """Fill rescheduling slots that are still empty (first write wins)."""
        if context.reschedule_patient_name is None and entities.patient_name:
            context.reschedule_patient_name = entities.patient_name
        if context.reschedule_new_date is None and entities.date:
            context.reschedule_new_date = entities.date
        if context.reschedule_new_time is None and entities.time:
            context.reschedule_new_time = entities.time

    def next_booking_state(self, context: ConversationContext) -> Optional[FlowState]:
        """State for the first missing booking slot, or None when complete."""
        if not context.gathered_date:
            return FlowState.BOOKING_AWAITING_DATE
        if not context.gathered_time:
            return FlowState.BOOKING_AWAITING_TIME
        if not context.gathered_reason:
            return FlowState.BOOKING_AWAITING_REASON
        return None

    def next_reschedule_state(
        self,
        context: ConversationContext,
        needs_target: bool,
    ) -> Optional[FlowState]:
        """State for the first missing rescheduling slot, or None when complete."""
        if needs_target and not context.reschedule_patient_name:
            return FlowState.RESCHEDULING_AWAITING_TARGET
        if not context.reschedule_new_date or not context.reschedule_new_time:
            return FlowState.RESCHEDULING_AWAITING_NEW_DATETIME
        return None


# Singleton
_flow: Optional[ConversationFlow] = None


def get_conversation_flow() -> ConversationFlow:
    """Get singleton ConversationFlow."""
    global _flow
    if _flow is None:
        _flow = ConversationFlow()
    return _flow

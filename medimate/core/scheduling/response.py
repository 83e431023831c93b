"""
Response Generator for the clinic assistant.

Fixed templates for every scheduling outcome, and an LLM reply for
free-form messages that stays on clinic topics.
"""

import logging
from datetime import date, datetime
from typing import Optional

from medimate.config import settings
from medimate.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from medimate.core.intelligence.intent.types import SenderRole
from medimate.core.intelligence.session.state import FlowState
from .errors import ExternalServiceError
from .models import AppointmentRecord

logger = logging.getLogger(__name__)


CONVERSE_PROMPT = """You are MediMate AI, the WhatsApp assistant for {clinic_name}, the clinic of {doctor_name}.
The message is from a {sender_role}.

You can help with booking, rescheduling and cancelling appointments, and with
questions about the clinic (opening hours: {hours}, Monday to Friday).

Reply in 1-3 short sentences. If the message is unrelated to the clinic or to
appointments, politely say you can only help with clinic matters. Never give
medical advice or diagnoses; suggest booking an appointment instead.

Message: "{message}"

Generate ONLY the reply text."""


def format_hour(hour: int) -> str:
    """17 -> "5 PM"."""
    suffix = "AM" if hour < 12 else "PM"
    display = hour % 12 or 12
    return f"{display} {suffix}"


def format_day(value: date | datetime) -> str:
    """Monday, March 10, 2025"""
    return f"{value.strftime('%A, %B')} {value.day}, {value.year}"


def format_clock(value: datetime) -> str:
    """2:00 PM"""
    return value.strftime("%I:%M %p").lstrip("0")


class ResponseGenerator:
    """
    Template replies with an LLM fallback for free-form messages.
    """

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        open_hour: Optional[int] = None,
        close_hour: Optional[int] = None,
    ):
        """Initialize generator.

        Args:
            claude_client: Claude client (uses singleton if not provided)
            open_hour: Opening hour used in replies (defaults to settings)
            close_hour: Closing hour used in replies (defaults to settings)
        """
        self._claude_client = claude_client
        self.open_hour = settings.clinic_open_hour if open_hour is None else open_hour
        self.close_hour = settings.clinic_close_hour if close_hour is None else close_hour

    async def _get_client(self) -> ClaudeClient:
        """Get Claude client."""
        if self._claude_client is None:
            self._claude_client = await get_claude_client()
        return self._claude_client

    @property
    def hours(self) -> str:
        return f"{format_hour(self.open_hour)} to {format_hour(self.close_hour)}"

    # === Small talk ===

    def greeting(self) -> str:
        return (
            f"Hello! I'm MediMate AI, your WhatsApp assistant for {settings.clinic_name}. "
            "How can I help you with your appointments today?"
        )

    def thank_you(self) -> str:
        return "You're very welcome! Is there anything else I can assist you with?"

    def opening_hours(self) -> str:
        return (
            f"The clinic is open from {self.hours}, Monday to Friday. "
            "We are closed on weekends and public holidays."
        )

    async def converse(self, message: str, sender_role: SenderRole) -> str:
        """
        Free-form reply scoped to clinic topics.

        Raises:
            ExternalServiceError: The LLM call failed
        """
        prompt = CONVERSE_PROMPT.format(
            clinic_name=settings.clinic_name,
            doctor_name=settings.doctor_name,
            sender_role=sender_role.value,
            hours=self.hours,
            message=message,
        )
        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=prompt,
                model=settings.claude_chat_model,
                max_tokens=200,
                temperature=0.7,
            )
        except ClaudeClientError as e:
            raise ExternalServiceError("claude", str(e)) from e

        text = response.content.strip()
        if not text:
            raise ExternalServiceError("claude", "empty reply")
        return text

    def converse_failed(self) -> str:
        return (
            "I'm sorry, I'm having a little trouble understanding. Could you please rephrase? "
            "You can ask me to book, reschedule, or cancel an appointment."
        )

    # === Slot prompts ===

    def prompt_for(self, state: FlowState, gathered_date: Optional[date] = None) -> str:
        """Question asking for the slot a state is waiting on."""
        if state == FlowState.BOOKING_AWAITING_DATE:
            return "Sure! What date would you like to come in? (for example 2025-03-10 or \"next Monday\")"
        if state == FlowState.BOOKING_AWAITING_TIME:
            day = f" on {format_day(gathered_date)}" if gathered_date else ""
            return f"What time{day} works for you? We see patients from {self.hours}."
        if state == FlowState.BOOKING_AWAITING_REASON:
            return "Great, that time is available. What is the reason for your visit?"
        if state == FlowState.RESCHEDULING_AWAITING_TARGET:
            return (
                "Doctor, which patient's appointment should I reschedule? "
                "Format: /reschedule [Patient Name] to [YYYY-MM-DD] at [HH:MM]"
            )
        if state == FlowState.RESCHEDULING_AWAITING_NEW_DATETIME:
            return "What new date and time would you like? (for example 2025-03-12 at 10:00)"
        return "How can I help you with your appointments today?"

    def parse_failed(self, slot: str, fragment: Optional[str]) -> str:
        shown = f' "{fragment}"' if fragment else ""
        if slot == "date":
            return (
                f"I couldn't understand the date{shown}. "
                "Could you send it like 2025-03-10 or \"next Monday\"?"
            )
        return (
            f"I couldn't understand the time{shown}. "
            "Could you send it like 14:00 or 2pm?"
        )

    def flow_restarted(self) -> str:
        return (
            "I'm sorry, I still couldn't understand that. Let's start over: "
            "just tell me what you'd like to do, for example \"book an appointment\"."
        )

    def resume_hint(self, prompt: str) -> str:
        """Reminder appended to an aside while a flow is open."""
        return f"\n\nTo continue where we left off: {prompt}"

    # === Outcomes ===

    def booking_confirmed(self, start: datetime, reason: str) -> str:
        return (
            f'Great! Your appointment for "{reason}" is confirmed for '
            f"{format_day(start)} at {format_clock(start)}. We look forward to seeing you!"
        )

    def rescheduled(self, start: datetime, patient_name: Optional[str] = None) -> str:
        when = f"{format_day(start)} at {format_clock(start)}"
        if patient_name:
            return (
                f"Appointment for {patient_name} has been rescheduled to {when}. "
                "You may want to notify the patient."
            )
        return f"Your appointment has been rescheduled to {when}."

    def cancelled(self, record: AppointmentRecord, by_doctor: bool = False) -> str:
        if by_doctor:
            return (
                f"Appointment for {record.patient_name} ({record.appointment_date} at "
                f"{record.appointment_time}) has been cancelled. You may want to notify the patient."
            )
        return (
            f"Your appointment for {record.reason} on {record.appointment_date} at "
            f"{record.appointment_time} has been cancelled."
        )

    def not_found(self, action: str, patient_name: Optional[str] = None, on: Optional[str] = None) -> str:
        if patient_name:
            day = f" on {on}" if on else ""
            return f'Could not find an active appointment for "{patient_name}"{day} to {action}.'
        if action == "reschedule":
            return (
                "I couldn't find an existing appointment for you to reschedule. "
                "Would you like to book a new one?"
            )
        return f"I couldn't find an active appointment for you to {action}."

    def patient_name_required(self) -> str:
        return (
            "Doctor, please provide the patient name to cancel. Format: /cancel [Patient Name] "
            "appointment (optionally add 'for YYYY-MM-DD' or 'for today')"
        )

    def unauthorized(self) -> str:
        return "Sorry, only the doctor can use that command."

    def pause_set(self, description: str) -> str:
        return (
            f"Okay, doctor. New bookings are paused {description}. "
            "Send /resume bookings to lift the pause."
        )

    def pause_invalid(self, start: date, end: date) -> str:
        return (
            f"The pause start date {start.isoformat()} is after the end date "
            f"{end.isoformat()}. Please check the dates and try again."
        )

    def pause_conflicts(self, total: int, listed: list[str]) -> str:
        """Warning about existing events inside a new pause window."""
        examples = "; ".join(listed)
        more = f" and {total - len(listed)} more" if total > len(listed) else ""
        return (
            f"\n\nNote: there {'is' if total == 1 else 'are'} {total} existing "
            f"appointment{'' if total == 1 else 's'} in this period ({examples}{more}). "
            "They have not been cancelled."
        )

    def resumed(self) -> str:
        return "Okay, doctor. Bookings are now resumed."

    def nothing_to_cancel_today(self) -> str:
        return "Doctor, there are no active appointments for today to cancel."

    def cancelled_today(self, count: int, names: list[str]) -> str:
        return (
            f"Okay, doctor. Cancelled {count} appointment(s) for today: {', '.join(names)}. "
            "You may want to notify them individually."
        )

    def cancel_today_failed(self) -> str:
        return (
            "Doctor, I found appointments for today but could not cancel them. "
            "Please check the appointment sheet and calendar."
        )

    def external_failure(self) -> str:
        return (
            "I'm sorry, something went wrong while updating the schedule. "
            "Please try again in a few moments."
        )

    def internal_error(self) -> str:
        return (
            "I'm sorry, an internal error occurred while processing your request. "
            "Please try again in a few moments. If the problem persists, please contact the clinic directly."
        )

    def invalid_timestamp(self) -> str:
        return (
            "I'm sorry, there was a problem with the timing of your message. "
            "Please try sending it again."
        )


# Singleton
_generator: Optional[ResponseGenerator] = None


def get_response_generator() -> ResponseGenerator:
    """Get singleton ResponseGenerator."""
    global _generator
    if _generator is None:
        _generator = ResponseGenerator()
    return _generator

"""
Daily appointment summary for the doctor.

Sent once a day (triggered by the cron endpoint) to the doctor's WhatsApp
number. The body is written by the LLM when available, with a plain list
as fallback.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from medimate.config import settings
from medimate.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from medimate.infra.sheets import SheetsAppointmentStore, get_appointment_store
from medimate.infra.whatsapp import WhatsAppClient, get_whatsapp_client
from .clock import Clock, clinic_now
from .models import AppointmentFilter, AppointmentRecord, AppointmentStatus
from .response import format_day

logger = logging.getLogger(__name__)


SUMMARY_PROMPT = """You are preparing a short morning briefing for {doctor_name}.

Today's booked appointments (time, patient, reason):
{appointments}

Write a concise, friendly summary for a WhatsApp message:
- List each appointment in time order as "HH:MM - Patient (reason)"
- Mention the total number of appointments
- No greeting and no sign-off

Generate ONLY the summary text."""


@dataclass
class SummaryResult:
    """Outcome of one daily summary run."""

    sent: bool
    appointment_count: int
    message: str
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "sent": self.sent,
            "appointment_count": self.appointment_count,
            "message": self.message,
        }
        if self.error:
            result["error"] = self.error
        return result


def plain_summary(records: list[AppointmentRecord]) -> str:
    lines = [
        f"{r.appointment_time} - {r.patient_name} ({r.reason or 'no reason given'})"
        for r in records
    ]
    lines.append(f"\nTotal: {len(records)} appointment(s).")
    return "\n".join(lines)


class DailySummaryService:
    """Builds and sends the doctor's daily appointment summary."""

    def __init__(
        self,
        appointment_store: Optional[SheetsAppointmentStore] = None,
        messenger: Optional[WhatsAppClient] = None,
        claude_client: Optional[ClaudeClient] = None,
        clock: Optional[Clock] = None,
        doctor_id: Optional[str] = None,
    ):
        self._appointment_store = appointment_store
        self._messenger = messenger
        self._claude_client = claude_client
        self.now: Clock = clock or clinic_now
        self.doctor_id = doctor_id if doctor_id is not None else settings.doctor_phone_number

    async def _get_client(self) -> ClaudeClient:
        if self._claude_client is None:
            self._claude_client = await get_claude_client()
        return self._claude_client

    def _get_appointment_store(self) -> SheetsAppointmentStore:
        if self._appointment_store is None:
            self._appointment_store = get_appointment_store()
        return self._appointment_store

    def _get_messenger(self) -> WhatsAppClient:
        if self._messenger is None:
            self._messenger = get_whatsapp_client()
        return self._messenger

    async def _write_body(self, records: list[AppointmentRecord]) -> str:
        """LLM-written body, or the plain list when the LLM is unavailable."""
        listing = "\n".join(
            f"{r.appointment_time} | {r.patient_name} | {r.reason}" for r in records
        )
        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=SUMMARY_PROMPT.format(
                    doctor_name=settings.doctor_name,
                    appointments=listing,
                ),
                model=settings.claude_chat_model,
                max_tokens=500,
                temperature=0.3,
            )
        except ClaudeClientError as e:
            logger.warning(f"Summary generation failed, using plain list: {e}")
            return plain_summary(records)

        text = response.content.strip()
        return text or plain_summary(records)

    async def build_message(self) -> tuple[str, int]:
        """
        Compose today's summary.

        Returns:
            (message text, number of booked appointments)

        Raises:
            ExternalServiceError: The appointment ledger could not be read
        """
        today = self.now().date()
        records = await self._get_appointment_store().query(
            AppointmentFilter(
                date=today.isoformat(),
                statuses=(AppointmentStatus.BOOKED.value,),
            )
        )
        records.sort(key=lambda r: r.appointment_time)
        day = format_day(today)

        if not records:
            return (
                f"Good morning, Doctor! There are no appointments scheduled for today, {day}.",
                0,
            )

        body = await self._write_body(records)
        return (
            f"Good morning, Doctor! Here is your summary for today, {day}:\n\n{body}",
            len(records),
        )

    async def send_daily_summary(self) -> SummaryResult:
        """
        Build the summary and send it to the doctor.

        Raises:
            ValueError: No doctor number is configured
            ExternalServiceError: The appointment ledger could not be read
        """
        if not self.doctor_id:
            raise ValueError("DOCTOR_PHONE_NUMBER is not configured")

        message, count = await self.build_message()
        send = await self._get_messenger().send(self.doctor_id, message)

        if send.success:
            logger.info(f"Daily summary sent to doctor ({count} appointment(s))")
        else:
            logger.error(f"Daily summary could not be delivered: {send.error}")

        return SummaryResult(
            sent=send.success,
            appointment_count=count,
            message=message,
            error=send.error,
        )


# Singleton
_summary_service: Optional[DailySummaryService] = None


def get_summary_service() -> DailySummaryService:
    """Get singleton DailySummaryService."""
    global _summary_service
    if _summary_service is None:
        _summary_service = DailySummaryService()
    return _summary_service

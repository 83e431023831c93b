"""
Scheduling rules.

Checks run in a fixed order and stop at the first violation:

1. past time
2. outside working hours
3. booking paused
4. slot conflict (exact start-time equality with an active appointment)
"""

import logging
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from .datetime_resolver import DateTimeResolver, ParseFailure
from .errors import ErrorKind, RuleViolation
from .models import ACTIVE_STATUSES, AppointmentCandidate, ExistingAppointment
from .pause import PauseWindowStore

logger = logging.getLogger(__name__)


class SchedulingRules:
    """Validates appointment candidates."""

    def __init__(
        self,
        pause_store: PauseWindowStore,
        now: Callable[[], datetime],
        open_hour: int = 9,
        close_hour: int = 17,
        resolver: Optional[DateTimeResolver] = None,
    ):
        """Initialize rules.

        Args:
            pause_store: Source of the current booking pause
            now: Returns the clinic's naive wall-clock time
            open_hour: First bookable hour (inclusive)
            close_hour: Closing hour (exclusive)
            resolver: Used to resolve stored appointment times
        """
        self.pause_store = pause_store
        self.now = now
        self.open_hour = open_hour
        self.close_hour = close_hour
        self.resolver = resolver or DateTimeResolver()

    def check_past(self, start: datetime) -> Optional[RuleViolation]:
        if start <= self.now():
            return RuleViolation(
                ErrorKind.PAST_TIME,
                "That time has already passed. Please choose a future date and time.",
            )
        return None

    def check_hours(self, start: datetime) -> Optional[RuleViolation]:
        if not (self.open_hour <= start.hour < self.close_hour):
            return RuleViolation(
                ErrorKind.OUTSIDE_HOURS,
                f"The clinic takes appointments between {self.open_hour}:00 and "
                f"{self.close_hour}:00. Please pick a time in that range.",
                {"open_hour": self.open_hour, "close_hour": self.close_hour},
            )
        return None

    def check_paused(self, start: date | datetime) -> Optional[RuleViolation]:
        day = start.date() if isinstance(start, datetime) else start
        window = self.pause_store.window
        if window.contains(day):
            return RuleViolation(
                ErrorKind.BOOKING_PAUSED,
                f"Sorry, the doctor is not taking bookings {window.describe()}. "
                "Please choose another date.",
                {
                    "start_date": window.start_date.isoformat() if window.start_date else None,
                    "end_date": window.end_date.isoformat() if window.end_date else None,
                },
            )
        return None

    def check_conflict(
        self,
        start: datetime,
        existing: Iterable[ExistingAppointment],
        exclude_row: Optional[int] = None,
    ) -> Optional[RuleViolation]:
        """
        Find an active appointment starting at exactly the same minute.

        Args:
            start: Candidate start
            existing: Appointments on the candidate's date
            exclude_row: row_ref of an appointment being rescheduled

        Returns:
            SlotConflict violation or None
        """
        date_str = start.strftime("%Y-%m-%d")
        for appointment in existing:
            if appointment.status not in ACTIVE_STATUSES:
                continue
            if exclude_row is not None and appointment.row_ref == exclude_row:
                continue
            if appointment.date != date_str:
                continue

            taken = self.resolver.resolve(appointment.date, appointment.time)
            if isinstance(taken, ParseFailure):
                logger.warning(
                    f"Skipping stored appointment with unreadable time: "
                    f"{appointment.date} {appointment.time!r}"
                )
                continue

            if taken == start:
                return RuleViolation(
                    ErrorKind.SLOT_CONFLICT,
                    f"Sorry, {start.strftime('%Y-%m-%d %H:%M')} is already booked. "
                    "Please choose a different time.",
                    {"date": appointment.date, "time": appointment.time},
                )
        return None

    def check_date(self, day: date) -> Optional[RuleViolation]:
        """Rules that can already reject a date before the time is known."""
        if day < self.now().date():
            return RuleViolation(
                ErrorKind.PAST_TIME,
                "That date has already passed. Please choose a future date.",
            )
        return self.check_paused(day)

    def precheck(self, start: datetime) -> Optional[RuleViolation]:
        """Rules that need no store lookup (past, hours, pause)."""
        return (
            self.check_past(start)
            or self.check_hours(start)
            or self.check_paused(start)
        )

    def validate(
        self,
        candidate: AppointmentCandidate,
        existing: Iterable[ExistingAppointment],
        exclude_row: Optional[int] = None,
    ) -> Optional[RuleViolation]:
        """
        Run every rule in order.

        Returns:
            The first violation, or None when the candidate is acceptable
        """
        violation = self.precheck(candidate.start) or self.check_conflict(
            candidate.start, existing, exclude_row=exclude_row
        )
        if violation:
            logger.info(f"Candidate {candidate.start} rejected: {violation.kind.value}")
        return violation

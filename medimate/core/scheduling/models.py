"""Appointment and calendar value types shared by the engine and adapters."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, time
from enum import Enum
from typing import Optional


class AppointmentStatus(str, Enum):
    """Status column values in the appointment ledger."""

    BOOKED = "booked"
    PENDING_CONFIRMATION = "pending_confirmation"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that occupy a slot
ACTIVE_STATUSES: tuple[str, ...] = (
    AppointmentStatus.BOOKED.value,
    AppointmentStatus.PENDING_CONFIRMATION.value,
    AppointmentStatus.RESCHEDULED.value,
)

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


@dataclass
class AppointmentRecord:
    """One row of the appointment ledger."""

    id: str
    patient_name: str
    phone_number: str
    appointment_date: str  # YYYY-MM-DD
    appointment_time: str  # HH:MM (24-hour)
    reason: str
    status: str
    calendar_event_id: Optional[str] = None
    notes: str = ""
    row_ref: Optional[int] = None  # Opaque handle assigned by the store

    def to_row(self) -> list[str]:
        """Convert to a sheet row (column order matches the header)."""
        return [
            self.id,
            self.patient_name,
            self.phone_number,
            self.appointment_date,
            self.appointment_time,
            self.reason,
            self.status.value if isinstance(self.status, AppointmentStatus) else self.status,
            self.calendar_event_id or "",
            self.notes or "",
        ]

    @classmethod
    def from_row(cls, row: list, row_ref: Optional[int] = None) -> "AppointmentRecord":
        """Create from a sheet row. Short rows are padded with blanks."""
        cells = [str(c) if c is not None else "" for c in row] + [""] * 9
        return cls(
            id=cells[0],
            patient_name=cells[1],
            phone_number=cells[2],
            appointment_date=cells[3],
            appointment_time=cells[4],
            reason=cells[5],
            status=cells[6] or "unknown",
            calendar_event_id=cells[7] or None,
            notes=cells[8],
            row_ref=row_ref,
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_existing(self) -> "ExistingAppointment":
        """Read-only view used for conflict detection."""
        return ExistingAppointment(
            date=self.appointment_date,
            time=self.appointment_time,
            patient_name=self.patient_name,
            status=self.status,
            row_ref=self.row_ref,
        )

    def sort_key(self) -> str:
        return f"{self.appointment_date}T{self.appointment_time or '00:00'}"


@dataclass(frozen=True)
class ExistingAppointment:
    """What conflict detection needs to know about a stored appointment."""

    date: str
    time: str
    patient_name: str
    status: str
    row_ref: Optional[int] = None


@dataclass(frozen=True)
class AppointmentCandidate:
    """A fully gathered booking, ready for validation and commit."""

    start: datetime
    reason: str
    duration_minutes: int = 60

    @property
    def date(self) -> date:
        return self.start.date()

    @property
    def time(self) -> time:
        return self.start.time()

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def date_str(self) -> str:
        return self.start.strftime(DATE_FORMAT)

    @property
    def time_str(self) -> str:
        return self.start.strftime(TIME_FORMAT)

    @property
    def slot_key(self) -> str:
        return f"{self.date_str} {self.time_str}"


@dataclass
class AppointmentFilter:
    """Criteria for querying the appointment ledger.

    All given criteria must match. Patient names match case-insensitively
    as a substring; statuses match any of the listed values.
    """

    date: Optional[str] = None
    statuses: tuple[str, ...] = ()
    patient_name: Optional[str] = None
    phone_number: Optional[str] = None

    def matches(self, record: AppointmentRecord) -> bool:
        if self.date and record.appointment_date != self.date:
            return False
        if self.statuses and record.status not in self.statuses:
            return False
        if self.patient_name and self.patient_name.lower() not in record.patient_name.lower():
            return False
        if self.phone_number and record.phone_number != self.phone_number:
            return False
        return True

    def to_dict(self) -> dict:
        """Non-empty criteria, for logging."""
        result: dict = {}
        if self.date:
            result["date"] = self.date
        if self.statuses:
            result["statuses"] = list(self.statuses)
        if self.patient_name:
            result["patient_name"] = self.patient_name
        if self.phone_number:
            result["phone_number"] = self.phone_number
        return result


@dataclass
class CalendarEventArgs:
    """Fields for creating or updating a calendar event."""

    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class CalendarEvent:
    """An event read back from the calendar."""

    id: str
    summary: str = ""
    start: Optional[datetime] = None
    extra: dict = field(default_factory=dict)

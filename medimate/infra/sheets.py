"""
Appointment ledger in Google Sheets.

One row per appointment in the "Appointments" sheet. The sheet and its
header row are created on first use. A record's row number is its row_ref.
"""

import asyncio
import logging
import re
from dataclasses import replace
from typing import Any, Optional
from uuid import uuid4

from medimate.config import settings
from medimate.core.scheduling.errors import ExternalServiceError
from medimate.core.scheduling.models import AppointmentFilter, AppointmentRecord
from .google import SHEETS_SCOPES, GoogleService

logger = logging.getLogger(__name__)

SHEET_NAME = "Appointments"

HEADER = [
    "ID",
    "Patient Name",
    "Phone Number",
    "Appointment Date",
    "Appointment Time",
    "Reason",
    "Status",
    "Calendar Event ID",
    "Notes",
]

LAST_COLUMN = "I"

# First data row (row 1 is the header)
FIRST_DATA_ROW = 2

_UPDATED_ROW = re.compile(r"![A-Z]+(\d+)")

_UPDATABLE_FIELDS = {
    "patient_name",
    "phone_number",
    "appointment_date",
    "appointment_time",
    "reason",
    "status",
    "calendar_event_id",
    "notes",
}


class SheetsAppointmentStore:
    """Appointment store backed by a Google spreadsheet."""

    def __init__(
        self,
        google: Optional[GoogleService] = None,
        spreadsheet_id: Optional[str] = None,
    ):
        """Initialize store.

        Args:
            google: Sheets API wrapper (defaults to service account from settings)
            spreadsheet_id: Spreadsheet ID (defaults to settings)
        """
        self._google = google or GoogleService.for_api(
            "sheets",
            "sheets",
            "v4",
            settings.google_sheets_client_email,
            settings.sheets_private_key,
            SHEETS_SCOPES,
        )
        self.spreadsheet_id = spreadsheet_id or settings.google_sheet_id
        self._ready = False
        self._ready_lock = asyncio.Lock()

    def _values(self, sheets: Any) -> Any:
        return sheets.spreadsheets().values()

    async def ensure_sheet(self) -> None:
        """Create the Appointments sheet and header row if missing."""
        if self._ready:
            return

        async with self._ready_lock:
            if self._ready:
                return

            meta = await self._google.execute(
                lambda s: s.spreadsheets().get(
                    spreadsheetId=self.spreadsheet_id, fields="sheets.properties.title"
                ),
                "get_spreadsheet",
            )
            titles = [
                sheet.get("properties", {}).get("title")
                for sheet in (meta or {}).get("sheets", [])
            ]
            if SHEET_NAME not in titles:
                logger.info(f"Creating sheet {SHEET_NAME!r}")
                await self._google.execute(
                    lambda s: s.spreadsheets().batchUpdate(
                        spreadsheetId=self.spreadsheet_id,
                        body={"requests": [{"addSheet": {"properties": {"title": SHEET_NAME}}}]},
                    ),
                    "add_sheet",
                )

            header = await self._google.execute(
                lambda s: self._values(s).get(
                    spreadsheetId=self.spreadsheet_id,
                    range=f"{SHEET_NAME}!A1:{LAST_COLUMN}1",
                ),
                "read_header",
            )
            if not (header or {}).get("values"):
                logger.info(f"Writing header row to {SHEET_NAME!r}")
                await self._google.execute(
                    lambda s: self._values(s).update(
                        spreadsheetId=self.spreadsheet_id,
                        range=f"{SHEET_NAME}!A1:{LAST_COLUMN}1",
                        valueInputOption="RAW",
                        body={"values": [HEADER]},
                    ),
                    "write_header",
                )

            self._ready = True

    async def append(self, record: AppointmentRecord) -> AppointmentRecord:
        """
        Append a record.

        Args:
            record: Record to store (an id is generated if empty)

        Returns:
            The stored record with id and row_ref set
        """
        await self.ensure_sheet()

        if not record.id:
            record = replace(record, id=str(uuid4()))

        result = await self._google.execute(
            lambda s: self._values(s).append(
                spreadsheetId=self.spreadsheet_id,
                range=f"{SHEET_NAME}!A:{LAST_COLUMN}",
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [record.to_row()]},
            ),
            "append_row",
            idempotent=False,
        )

        updated_range = (result or {}).get("updates", {}).get("updatedRange", "")
        match = _UPDATED_ROW.search(updated_range)
        row_ref = int(match.group(1)) if match else None

        logger.info(f"Appointment {record.id} appended at row {row_ref}")
        return replace(record, row_ref=row_ref)

    async def query(self, filter: AppointmentFilter) -> list[AppointmentRecord]:
        """
        Read every record matching the filter.

        Args:
            filter: Criteria (empty filter returns every record)

        Returns:
            Matching records in sheet order
        """
        await self.ensure_sheet()

        result = await self._google.execute(
            lambda s: self._values(s).get(
                spreadsheetId=self.spreadsheet_id,
                range=f"{SHEET_NAME}!A{FIRST_DATA_ROW}:{LAST_COLUMN}",
            ),
            "read_rows",
        )

        records = []
        for offset, row in enumerate((result or {}).get("values", [])):
            if not row or not any(str(cell).strip() for cell in row):
                continue
            record = AppointmentRecord.from_row(row, row_ref=FIRST_DATA_ROW + offset)
            if filter.matches(record):
                records.append(record)

        logger.debug(f"Query {filter.to_dict()} matched {len(records)} appointment(s)")
        return records

    async def find_latest(self, filter: AppointmentFilter) -> Optional[AppointmentRecord]:
        """Latest matching record by appointment date and time."""
        records = await self.query(filter)
        if not records:
            return None
        return max(records, key=lambda r: r.sort_key())

    async def update(self, row_ref: int, partial: dict) -> AppointmentRecord:
        """
        Overwrite some fields of a stored record.

        Args:
            row_ref: Row number returned by query/append
            partial: AppointmentRecord field names to new values

        Returns:
            The updated record

        Raises:
            ExternalServiceError: The row is empty or the write failed
        """
        unknown = set(partial) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        await self.ensure_sheet()
        row_range = f"{SHEET_NAME}!A{row_ref}:{LAST_COLUMN}{row_ref}"

        current = await self._google.execute(
            lambda s: self._values(s).get(spreadsheetId=self.spreadsheet_id, range=row_range),
            "read_row",
        )
        rows = (current or {}).get("values", [])
        if not rows:
            raise ExternalServiceError("sheets", f"row {row_ref} is empty")

        record = replace(AppointmentRecord.from_row(rows[0], row_ref=row_ref), **partial)

        await self._google.execute(
            lambda s: self._values(s).update(
                spreadsheetId=self.spreadsheet_id,
                range=row_range,
                valueInputOption="RAW",
                body={"values": [record.to_row()]},
            ),
            "update_row",
        )

        logger.info(f"Appointment {record.id} (row {row_ref}) updated: {sorted(partial)}")
        return record


# Singleton
_store: Optional[SheetsAppointmentStore] = None


def get_appointment_store() -> SheetsAppointmentStore:
    """Get singleton SheetsAppointmentStore."""
    global _store
    if _store is None:
        _store = SheetsAppointmentStore()
    return _store

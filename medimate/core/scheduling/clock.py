"""Clinic wall-clock time."""

from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from medimate.config import settings

Clock = Callable[[], datetime]


def clinic_now(timezone: Optional[str] = None) -> datetime:
    """Current naive wall-clock time in the clinic's timezone."""
    tz = ZoneInfo(timezone or settings.clinic_timezone)
    return datetime.now(tz).replace(tzinfo=None)

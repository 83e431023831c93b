"""
Doctor-declared booking pause.

The pause is a single window held in memory. Writers replace it under one
exclusive lock; readers just look at the current immutable snapshot.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from .clock import clinic_now
from .errors import InvalidPauseWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PauseWindow:
    """A booking pause.

    start_date and end_date are inclusive. A window with neither bound
    pauses every date.
    """

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    active: bool = True

    def contains(self, day: date) -> bool:
        if not self.active:
            return False
        if self.start_date and self.end_date:
            return self.start_date <= day <= self.end_date
        if self.start_date:
            return day == self.start_date
        if self.end_date:
            return day <= self.end_date
        return True

    @property
    def is_blanket(self) -> bool:
        return self.active and self.start_date is None and self.end_date is None

    def describe(self) -> str:
        """Human-readable bounds, used in replies."""
        if not self.active:
            return "not paused"
        if self.is_blanket:
            return "until further notice"
        if self.start_date and self.end_date and self.start_date != self.end_date:
            return f"from {self.start_date.isoformat()} to {self.end_date.isoformat()}"
        if self.start_date:
            return f"on {self.start_date.isoformat()}"
        return f"until {self.end_date.isoformat()}"


INACTIVE = PauseWindow(active=False)


class PauseWindowStore:
    """Holds the current pause window."""

    def __init__(self, today: Optional[Callable[[], date]] = None):
        """Initialize store.

        Args:
            today: Returns the clinic's current date (defaults to date.today)
        """
        self._today = today or date.today
        self._lock = threading.Lock()
        self._window: PauseWindow = INACTIVE

    @property
    def window(self) -> PauseWindow:
        """Current snapshot."""
        return self._window

    def build_window(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> PauseWindow:
        """
        Turn pause bounds into a window without activating it.

        Args:
            start: First paused date. Alone, it pauses that single day.
            end: Last paused date. Alone, it pauses from today until end.

        Returns:
            The window a matching set_pause would install

        Raises:
            InvalidPauseWindow: start is after end
        """
        if start is None and end is not None:
            start = self._today()

        if start is not None and end is not None and start > end:
            raise InvalidPauseWindow(
                f"Pause start {start.isoformat()} is after end {end.isoformat()}"
            )

        return PauseWindow(start_date=start, end_date=end, active=True)

    def set_pause(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> PauseWindow:
        """
        Declare a pause.

        Raises:
            InvalidPauseWindow: start is after end (store left unchanged)
        """
        return self.activate(self.build_window(start, end))

    def activate(self, window: PauseWindow) -> PauseWindow:
        """Install a window built by build_window."""
        with self._lock:
            self._window = window

        logger.info(f"Bookings paused {window.describe()}")
        return window

    def clear_pause(self) -> None:
        """Lift any pause."""
        with self._lock:
            self._window = INACTIVE
        logger.info("Booking pause cleared")

    def is_paused_on(self, day: date | datetime) -> bool:
        if isinstance(day, datetime):
            day = day.date()
        return self._window.contains(day)


# Singleton
_pause_store: Optional[PauseWindowStore] = None


def get_pause_store() -> PauseWindowStore:
    """Get the process-wide PauseWindowStore."""
    global _pause_store
    if _pause_store is None:
        _pause_store = PauseWindowStore(today=lambda: clinic_now().date())
    return _pause_store

"""
Flexible date/time resolution.

Turns the loosely formatted date and time fragments produced by the intent
recognizer ("2025-03-10" + "2pm", "2025-03-10" + "14:00", ...) into a naive
wall-clock datetime in the clinic's timezone.

Resolution is an ordered list of strategies. Each strategy takes the two
fragments and returns a datetime or None; the first hit wins. Nothing here
raises on bad input: callers get a ParseFailure and re-prompt.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseFailure:
    """Date/time fragments could not be resolved."""

    reason: str
    date_fragment: Optional[str] = None
    time_fragment: Optional[str] = None
    slot: str = "time"  # Which slot to re-ask for: "date" or "time"


# Combined "<date> <time>" formats, tried in order
STRICT_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d %H:%M",    # 2025-03-10 14:00
    "%Y-%m-%d %I:%M %p",  # 2025-03-10 2:00 PM
    "%Y-%m-%d %I:%M%p",   # 2025-03-10 02:00pm
    "%Y-%m-%d %I%p",      # 2025-03-10 2pm
)

TIME_PATTERN = re.compile(r"(\d{1,2})[:.]?(\d{0,2})\s*(am|pm)?", re.IGNORECASE)

# A message that is nothing but a time ("14:00", "2 pm", "10.30am")
BARE_TIME_PATTERN = re.compile(
    r"^\s*\d{1,2}(?:[:.]\d{2})?\s*(?:am|pm)?\s*$", re.IGNORECASE
)

Strategy = Callable[[str, str], Optional[datetime]]


def _strict_format(fmt: str) -> Strategy:
    """Build a strategy that parses "<date> <time>" with one strptime format."""

    def strategy(date_fragment: str, time_fragment: str) -> Optional[datetime]:
        try:
            return datetime.strptime(f"{date_fragment} {time_fragment}", fmt)
        except ValueError:
            return None

    strategy.__name__ = f"strict[{fmt}]"
    return strategy


def parse_date(fragment: Optional[str]) -> Optional[date]:
    """Parse a date fragment as ISO-8601, then as YYYY-MM-DD."""
    if not fragment:
        return None
    text = fragment.strip()

    try:
        parsed = datetime.fromisoformat(text)
        return parsed.date()
    except ValueError:
        pass

    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        return None


def parse_time(fragment: Optional[str]) -> Optional[tuple[int, int]]:
    """Extract (hour, minute) from a time fragment.

    Bare times without am/pm are read as 24-hour. Returns None when the
    fragment has no time or the values are out of range.
    """
    if not fragment:
        return None

    match = TIME_PATTERN.search(fragment)
    if not match:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    period = (match.group(3) or "").lower()

    if period:
        # 12-hour clock: 0pm / 13pm are not times
        if hour < 1 or hour > 12:
            return None
        if period == "pm" and hour < 12:
            hour += 12
        elif period == "am" and hour == 12:
            hour = 0

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None

    return hour, minute


def _date_then_time(date_fragment: str, time_fragment: str) -> Optional[datetime]:
    """Permissive fallback: parse the date alone, then regex the time."""
    base = parse_date(date_fragment)
    if base is None:
        return None

    parsed = parse_time(time_fragment)
    if parsed is None:
        return None

    hour, minute = parsed
    return datetime(base.year, base.month, base.day, hour, minute, 0, 0)


DEFAULT_STRATEGIES: tuple[Strategy, ...] = tuple(
    _strict_format(fmt) for fmt in STRICT_FORMATS
) + (_date_then_time,)


def looks_like_time(text: Optional[str]) -> bool:
    """True when the whole text is a time expression."""
    return bool(text and BARE_TIME_PATTERN.match(text))


class DateTimeResolver:
    """Resolves date + time fragments through an ordered strategy list."""

    def __init__(self, strategies: Optional[tuple[Strategy, ...]] = None):
        """Initialize resolver.

        Args:
            strategies: Override the cascade (for testing single entries)
        """
        self.strategies = strategies or DEFAULT_STRATEGIES

    def resolve(
        self,
        date_fragment: Optional[str],
        time_fragment: Optional[str],
    ) -> Union[datetime, ParseFailure]:
        """Resolve fragments to a datetime at second/microsecond zero.

        Args:
            date_fragment: Date text, e.g. "2025-03-10"
            time_fragment: Time text, e.g. "14:00", "2pm", "10:30 am"

        Returns:
            datetime on success, ParseFailure otherwise
        """
        if not date_fragment:
            return ParseFailure("missing date", date_fragment, time_fragment, slot="date")
        if not time_fragment:
            return ParseFailure("missing time", date_fragment, time_fragment, slot="time")

        date_fragment = date_fragment.strip()
        time_fragment = time_fragment.strip()

        # An unusable date short-circuits before any time handling
        if parse_date(date_fragment) is None:
            logger.debug(f"Unparseable date fragment: {date_fragment!r}")
            return ParseFailure("unparseable date", date_fragment, time_fragment, slot="date")

        for strategy in self.strategies:
            result = strategy(date_fragment, time_fragment)
            if result is not None:
                logger.debug(
                    f"Resolved {date_fragment!r} {time_fragment!r} -> {result} "
                    f"via {getattr(strategy, '__name__', strategy)}"
                )
                return result.replace(second=0, microsecond=0, tzinfo=None)

        logger.debug(f"Unparseable time fragment: {time_fragment!r}")
        return ParseFailure("unparseable time", date_fragment, time_fragment, slot="time")

    def resolve_date(self, fragment: Optional[str]) -> Union[date, ParseFailure]:
        """Resolve a date fragment on its own."""
        parsed = parse_date(fragment)
        if parsed is None:
            return ParseFailure("unparseable date", fragment, None, slot="date")
        return parsed


# Singleton
_resolver: Optional[DateTimeResolver] = None


def get_datetime_resolver() -> DateTimeResolver:
    """Get singleton DateTimeResolver."""
    global _resolver
    if _resolver is None:
        _resolver = DateTimeResolver()
    return _resolver

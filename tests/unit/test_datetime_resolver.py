"""Tests for date/time resolution."""

from datetime import date, datetime

import pytest

from medimate.core.scheduling.datetime_resolver import (
    DateTimeResolver,
    ParseFailure,
    looks_like_time,
    parse_date,
    parse_time,
)


class TestDateTimeResolver:
    """Test the strategy cascade."""

    @pytest.fixture
    def resolver(self):
        return DateTimeResolver()

    @pytest.mark.parametrize(
        "time_fragment,expected",
        [
            ("14:00", datetime(2025, 3, 10, 14, 0)),
            ("2pm", datetime(2025, 3, 10, 14, 0)),
            ("2 PM", datetime(2025, 3, 10, 14, 0)),
            ("2:00 pm", datetime(2025, 3, 10, 14, 0)),
            ("02:00PM", datetime(2025, 3, 10, 14, 0)),
            ("9:30", datetime(2025, 3, 10, 9, 30)),
            ("10.30am", datetime(2025, 3, 10, 10, 30)),
            ("12pm", datetime(2025, 3, 10, 12, 0)),
            ("12am", datetime(2025, 3, 10, 0, 0)),
            ("around 3pm", datetime(2025, 3, 10, 15, 0)),
        ],
    )
    def test_time_formats_agree(self, resolver, time_fragment, expected):
        assert resolver.resolve("2025-03-10", time_fragment) == expected

    def test_seconds_are_zeroed(self, resolver):
        result = resolver.resolve("2025-03-10", "14:00")

        assert result.second == 0
        assert result.microsecond == 0
        assert result.tzinfo is None

    def test_missing_date(self, resolver):
        result = resolver.resolve(None, "14:00")

        assert isinstance(result, ParseFailure)
        assert result.slot == "date"

    def test_missing_time(self, resolver):
        result = resolver.resolve("2025-03-10", "")

        assert isinstance(result, ParseFailure)
        assert result.slot == "time"

    def test_bad_date_short_circuits(self, resolver):
        result = resolver.resolve("next-ish week", "2pm")

        assert isinstance(result, ParseFailure)
        assert result.slot == "date"
        assert result.date_fragment == "next-ish week"

    @pytest.mark.parametrize("time_fragment", ["25:00", "13pm", "0am", "noonish", "14:75"])
    def test_bad_time(self, resolver, time_fragment):
        result = resolver.resolve("2025-03-10", time_fragment)

        assert isinstance(result, ParseFailure)
        assert result.slot == "time"
        assert result.time_fragment == time_fragment

    def test_custom_strategy_list(self):
        resolver = DateTimeResolver(strategies=(lambda d, t: datetime(2030, 1, 1, 9, 0, 30),))

        assert resolver.resolve("2025-03-10", "anything") == datetime(2030, 1, 1, 9, 0)

    def test_resolve_date(self, resolver):
        assert resolver.resolve_date("2025-03-10") == date(2025, 3, 10)
        assert isinstance(resolver.resolve_date("tomorrow"), ParseFailure)


class TestHelpers:
    """Test fragment helpers."""

    def test_parse_date_accepts_iso_datetime(self):
        assert parse_date("2025-03-10T09:00:00") == date(2025, 3, 10)

    def test_parse_date_rejects_words(self):
        assert parse_date("Monday") is None
        assert parse_date(None) is None

    def test_parse_time_24h_without_meridiem(self):
        assert parse_time("17:45") == (17, 45)

    def test_parse_time_rejects_out_of_range(self):
        assert parse_time("24:00") is None

    @pytest.mark.parametrize("text", ["2pm", "14:00", "10.30 am", " 9 "])
    def test_looks_like_time(self, text):
        assert looks_like_time(text)

    @pytest.mark.parametrize("text", ["at 2pm please", "2025-03-10", "checkup", ""])
    def test_not_a_bare_time(self, text):
        assert not looks_like_time(text)

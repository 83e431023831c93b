"""Tests for the booking pause."""

from datetime import date, datetime

import pytest

from medimate.core.scheduling.errors import InvalidPauseWindow
from medimate.core.scheduling.pause import INACTIVE, PauseWindow, PauseWindowStore


class TestPauseWindow:
    """Test window boundaries."""

    def test_inclusive_range(self):
        window = PauseWindow(start_date=date(2025, 3, 5), end_date=date(2025, 3, 7))

        assert not window.contains(date(2025, 3, 4))
        assert window.contains(date(2025, 3, 5))
        assert window.contains(date(2025, 3, 7))
        assert not window.contains(date(2025, 3, 8))

    def test_start_only_is_single_day(self):
        window = PauseWindow(start_date=date(2025, 3, 6))

        assert window.contains(date(2025, 3, 6))
        assert not window.contains(date(2025, 3, 3))
        assert not window.contains(date(2025, 3, 7))

    def test_end_only(self):
        window = PauseWindow(end_date=date(2025, 3, 6))

        assert window.contains(date(2025, 3, 1))
        assert not window.contains(date(2025, 3, 7))

    def test_blanket(self):
        window = PauseWindow()

        assert window.is_blanket
        assert window.contains(date(2030, 1, 1))
        assert window.describe() == "until further notice"

    def test_inactive_contains_nothing(self):
        assert not INACTIVE.contains(date(2025, 3, 6))
        assert not INACTIVE.is_blanket

    @pytest.mark.parametrize(
        "window,expected",
        [
            (PauseWindow(date(2025, 3, 5), date(2025, 3, 7)), "from 2025-03-05 to 2025-03-07"),
            (PauseWindow(date(2025, 3, 5), date(2025, 3, 5)), "on 2025-03-05"),
            (PauseWindow(start_date=date(2025, 3, 5)), "on 2025-03-05"),
            (PauseWindow(end_date=date(2025, 3, 7)), "until 2025-03-07"),
        ],
    )
    def test_describe(self, window, expected):
        assert window.describe() == expected


class TestPauseWindowStore:
    """Test setting and clearing the pause."""

    @pytest.fixture
    def store(self):
        return PauseWindowStore(today=lambda: date(2025, 3, 3))

    def test_starts_inactive(self, store):
        assert store.window is INACTIVE
        assert not store.is_paused_on(date(2025, 3, 3))

    def test_end_only_starts_today(self, store):
        window = store.set_pause(end=date(2025, 3, 6))

        assert window.start_date == date(2025, 3, 3)
        assert store.is_paused_on(date(2025, 3, 4))
        assert not store.is_paused_on(date(2025, 3, 2))

    def test_start_after_end_rejected_without_change(self, store):
        store.set_pause(date(2025, 3, 4))

        with pytest.raises(InvalidPauseWindow):
            store.set_pause(date(2025, 3, 10), date(2025, 3, 5))

        assert store.window == PauseWindow(start_date=date(2025, 3, 4))

    def test_new_pause_replaces_old(self, store):
        store.set_pause(date(2025, 3, 4))
        store.set_pause(date(2025, 3, 6))

        assert not store.is_paused_on(date(2025, 3, 4))
        assert store.is_paused_on(date(2025, 3, 6))

    def test_accepts_datetime(self, store):
        store.set_pause(date(2025, 3, 6))

        assert store.is_paused_on(datetime(2025, 3, 6, 10, 0))

    def test_clear(self, store):
        store.set_pause()
        store.clear_pause()

        assert store.window is INACTIVE

    def test_build_window_does_not_activate(self, store):
        window = store.build_window(end=date(2025, 3, 6))

        assert window == PauseWindow(start_date=date(2025, 3, 3), end_date=date(2025, 3, 6))
        assert store.window is INACTIVE

        store.activate(window)

        assert store.is_paused_on(date(2025, 3, 5))

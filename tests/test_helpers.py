"""
Tests for time helpers, clock parsing and the settings layer.
"""

from datetime import datetime, time, timedelta, timezone

import pytest
from pydantic import ValidationError

from config.settings import NotificationSettings, ResilienceSettings, parse_clock
from utils.helpers import TimeHelper


class TestTimeHelper:

    def test_utc_now_is_naive(self):
        assert TimeHelper.get_utc_now().tzinfo is None

    def test_to_naive_utc_converts_offsets(self):
        aware = datetime(2030, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert TimeHelper.to_naive_utc(aware) == datetime(2030, 1, 1, 10, 0)

    def test_minutes_between_never_negative(self):
        start = datetime(2030, 1, 1, 12, 0)
        assert TimeHelper.minutes_between(start, start + timedelta(minutes=90)) == 90.0
        assert TimeHelper.minutes_between(start, start - timedelta(minutes=5)) == 0.0

    @pytest.mark.parametrize("seconds,expected", [
        (0, "0s"),
        (59, "59s"),
        (300, "5m"),
        (3725, "1h 2m 5s"),
        (90000, "1d 1h"),
    ])
    def test_human_readable(self, seconds, expected):
        assert TimeHelper.seconds_to_human_readable(seconds) == expected

    def test_window_same_day(self):
        assert TimeHelper.in_window(time(12, 0), time(11, 0), time(13, 0))
        assert not TimeHelper.in_window(time(13, 0), time(11, 0), time(13, 0))

    def test_window_wraps_midnight(self):
        start, end = time(22, 0), time(6, 0)
        assert TimeHelper.in_window(time(23, 30), start, end)
        assert TimeHelper.in_window(time(5, 59), start, end)
        assert not TimeHelper.in_window(time(6, 0), start, end)

    def test_empty_window(self):
        assert not TimeHelper.in_window(time(8, 0), time(8, 0), time(8, 0))


class TestSettings:

    def test_parse_clock(self):
        assert parse_clock("7:05") == time(7, 5)
        assert parse_clock("") is None
        with pytest.raises(ValueError):
            parse_clock("25:00")

    def test_invalid_quiet_hours_rejected(self):
        with pytest.raises(ValidationError):
            NotificationSettings(quiet_hours_start="late")

    def test_quiet_hours_need_both_ends(self):
        assert NotificationSettings(quiet_hours_start="22:00", quiet_hours_end=None).quiet_hours is None

    def test_delay_relationship(self):
        with pytest.raises(ValidationError):
            ResilienceSettings(initial_delay=5.0, max_delay=1.0)

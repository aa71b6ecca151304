"""Tests for the market session gate.

Covers:
- Inclusive open/close boundaries
- Weekend rejection and the weekdays-only flag
- Timezone conversion and naive timestamps
- Holiday calendar hook
- Config validation
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from market.clock import MarketClock, MarketConfig, parse_hhmm

NY = ZoneInfo("America/New_York")


def make_clock(holiday_calendar=None, **overrides) -> MarketClock:
    """Helper to create a clock with the default NY session."""
    raw = {
        "open_time": "09:30",
        "close_time": "16:00",
        "timezone": "America/New_York",
        "weekdays_only": True,
        "closed_holidays": True,
    }
    raw.update(overrides)
    return MarketClock(MarketConfig(raw), holiday_calendar=holiday_calendar)


class TestSessionWindow:
    """Tests for the open/close window."""

    def test_open_mid_session(self):
        """A Monday at 10:00 New York time is open."""
        status = make_clock().is_open(datetime(2026, 10, 19, 10, 0, tzinfo=NY))

        assert status.open
        assert status.reason == "Open"

    def test_open_boundary_is_inclusive(self):
        """Exactly 09:30:00 is open, one second earlier is not."""
        clock = make_clock()

        assert clock.is_open(datetime(2026, 10, 19, 9, 30, 0, tzinfo=NY)).open
        assert not clock.is_open(datetime(2026, 10, 19, 9, 29, 59, tzinfo=NY)).open

    def test_close_boundary_is_inclusive(self):
        """Exactly 16:00:00 is open, one second later is not."""
        clock = make_clock()

        assert clock.is_open(datetime(2026, 10, 19, 16, 0, 0, tzinfo=NY)).open
        late = clock.is_open(datetime(2026, 10, 19, 16, 0, 1, tzinfo=NY))
        assert not late.open
        assert late.reason == "Outside market hours"

    def test_status_reports_session(self):
        """Status carries the configured hours and zone."""
        status = make_clock().is_open(datetime(2026, 10, 19, 20, 0, tzinfo=NY))

        assert status.timezone == "America/New_York"
        assert status.open_time == "09:30"
        assert status.close_time == "16:00"


class TestTimezones:
    """Tests for timezone conversion."""

    def test_utc_instant_converted_to_market_zone(self):
        """14:00 UTC is 10:00 in New York during daylight time."""
        status = make_clock().is_open(datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc))

        assert status.open

    def test_naive_timestamp_taken_as_utc(self):
        """A naive 12:00 is 08:00 New York, before the open."""
        status = make_clock().is_open(datetime(2026, 10, 19, 12, 0))

        assert not status.open

    def test_other_zone(self):
        """Sessions follow the configured zone, not the caller's."""
        clock = make_clock(timezone="Asia/Kolkata", open_time="09:15", close_time="15:30")

        # 04:00 UTC is 09:30 IST
        assert clock.is_open(datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)).open
        assert not clock.is_open(datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)).open


class TestWeekdays:
    """Tests for weekend handling."""

    def test_weekend_closed(self):
        """Saturday is closed with reason Weekend."""
        status = make_clock().is_open(datetime(2026, 10, 17, 11, 0, tzinfo=NY))

        assert not status.open
        assert status.reason == "Weekend"

    def test_weekend_open_when_weekdays_only_disabled(self):
        """Without the weekday rule a Sunday session is open."""
        status = make_clock(weekdays_only=False).is_open(datetime(2026, 10, 18, 11, 0, tzinfo=NY))

        assert status.open

    def test_weekend_judged_in_market_zone(self):
        """Friday 23:00 New York is already Saturday in UTC but still Friday locally."""
        clock = make_clock(close_time="23:30")

        assert clock.is_open(datetime(2026, 10, 24, 3, 0, tzinfo=timezone.utc)).open


class TestHolidays:
    """Tests for the holiday hook."""

    def test_no_calendar_means_no_holiday_enforcement(self):
        """The flag alone does not close the market."""
        status = make_clock().is_open(datetime(2026, 12, 25, 10, 0, tzinfo=NY))

        assert status.open

    def test_injected_calendar_closes_market(self):
        """A holiday reported by the calendar closes the session."""
        clock = make_clock(holiday_calendar=lambda d: d == date(2026, 12, 25))

        status = clock.is_open(datetime(2026, 12, 25, 10, 0, tzinfo=NY))

        assert not status.open
        assert status.reason == "Holiday"

    def test_calendar_ignored_when_flag_off(self):
        """With closed_holidays off the calendar is not consulted."""
        clock = make_clock(holiday_calendar=lambda d: True, closed_holidays=False)

        assert clock.is_open(datetime(2026, 12, 25, 10, 0, tzinfo=NY)).open


class TestConfig:
    """Tests for market config parsing."""

    def test_defaults(self):
        """Empty config falls back to a 09:30-16:00 New York weekday session."""
        cfg = MarketConfig({})

        assert cfg.open_time == parse_hhmm("09:30")
        assert cfg.close_time == parse_hhmm("16:00")
        assert cfg.timezone == "America/New_York"
        assert cfg.weekdays_only is True
        assert cfg.closed_holidays is True

    def test_bad_time_rejected(self):
        """Malformed HH:MM raises ValueError."""
        with pytest.raises(ValueError):
            parse_hhmm("9.30")

    def test_open_after_close_rejected(self):
        """A window that ends before it starts is invalid."""
        with pytest.raises(ValueError):
            make_clock(open_time="17:00", close_time="09:00")

    def test_unknown_timezone_rejected(self):
        """Unknown zones are reported at construction."""
        with pytest.raises(ValueError):
            make_clock(timezone="Mars/Olympus_Mons")

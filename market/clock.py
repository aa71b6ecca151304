"""Market session gate.

Decides whether trading is permitted at a given instant from the configured
session window, timezone and weekday rule. Holiday exclusion is only a
recognized flag here: the calendar itself belongs to the catalog and may be
injected as ``holiday_calendar``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_OPEN = "09:30"
DEFAULT_CLOSE = "16:00"
DEFAULT_TIMEZONE = "America/New_York"

HolidayCalendar = Callable[[date], bool]


def parse_hhmm(value: str) -> time:
    try:
        hh, mm = str(value).strip().split(":")
        return time(int(hh), int(mm))
    except ValueError:
        raise ValueError(f"Expected HH:MM time, got {value!r}") from None


@dataclass(frozen=True)
class MarketConfig:
    raw: Dict[str, Any]

    @property
    def open_time(self) -> time:
        return parse_hhmm(self.raw.get("open_time", DEFAULT_OPEN))

    @property
    def close_time(self) -> time:
        return parse_hhmm(self.raw.get("close_time", DEFAULT_CLOSE))

    @property
    def timezone(self) -> str:
        return str(self.raw.get("timezone") or DEFAULT_TIMEZONE)

    @property
    def weekdays_only(self) -> bool:
        return bool(self.raw.get("weekdays_only", True))

    @property
    def closed_holidays(self) -> bool:
        return bool(self.raw.get("closed_holidays", True))

    def validate(self) -> None:
        if self.open_time > self.close_time:
            raise ValueError(f"open_time {self.open_time:%H:%M} is after close_time {self.close_time:%H:%M}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {self.timezone}") from None


@dataclass(frozen=True)
class MarketStatus:
    open: bool
    reason: str
    timezone: str
    open_time: str
    close_time: str


class MarketClock:
    def __init__(self, config: MarketConfig, holiday_calendar: Optional[HolidayCalendar] = None):
        config.validate()
        self.config = config
        self._zone = ZoneInfo(config.timezone)
        self._holiday_calendar = holiday_calendar

    def is_open(self, now: datetime) -> MarketStatus:
        """Evaluate the session at ``now``; naive datetimes are taken as UTC."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(self._zone)

        if self.config.weekdays_only and local.weekday() >= 5:
            return self._status(False, "Weekend")

        if (
            self.config.closed_holidays
            and self._holiday_calendar is not None
            and self._holiday_calendar(local.date())
        ):
            return self._status(False, "Holiday")

        # both boundaries inclusive
        tod = local.time().replace(tzinfo=None)
        is_open = self.config.open_time <= tod <= self.config.close_time
        return self._status(is_open, "Open" if is_open else "Outside market hours")

    def _status(self, is_open: bool, reason: str) -> MarketStatus:
        return MarketStatus(
            open=is_open,
            reason=reason,
            timezone=self.config.timezone,
            open_time=f"{self.config.open_time:%H:%M}",
            close_time=f"{self.config.close_time:%H:%M}",
        )

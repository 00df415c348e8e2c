from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from aggregator.errors import ConfigurationError

HH_MM = re.compile(r"^(\d{1,2}):(\d{2})$")
DAILY_CRON = re.compile(r"^(\d{1,2})\s+(\d{1,2})\s+\*\s+\*\s+\*$")


@dataclass(frozen=True)
class DailyRule:
    """Fire once a day at hour:minute wall-clock time in `tz`."""

    hour: int
    minute: int
    tz: str = "UTC"

    def describe(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d} {self.tz}"


def parse_recurrence(expr: str, tz: str = "UTC") -> DailyRule:
    """Accept "HH:MM" or the daily cron form "M H * * *"."""
    text = (expr or "").strip()
    m = HH_MM.match(text)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
    else:
        m = DAILY_CRON.match(text)
        if not m:
            raise ConfigurationError(f"unsupported schedule {expr!r}; use HH:MM or 'M H * * *'")
        minute, hour = int(m.group(1)), int(m.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ConfigurationError(f"schedule {expr!r} is out of range")
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"unknown timezone {tz!r}") from exc
    return DailyRule(hour=hour, minute=minute, tz=tz)


def next_fire_time(now: datetime, rule: DailyRule) -> datetime:
    """Next fire strictly after `now`, as naive UTC.

    A naive `now` is taken to be UTC.
    """
    zone = ZoneInfo(rule.tz)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(zone)
    candidate = local_now.replace(hour=rule.hour, minute=rule.minute, second=0, microsecond=0)
    if candidate <= local_now:
        day = local_now.date() + timedelta(days=1)
        candidate = datetime(day.year, day.month, day.day, rule.hour, rule.minute, tzinfo=zone)
    return candidate.astimezone(timezone.utc).replace(tzinfo=None)

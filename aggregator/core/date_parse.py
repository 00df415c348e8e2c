from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
import re
from typing import Any

MONTHS = {
    name: number
    for number, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"), start=1
    )
}
MONTHS["sept"] = 9

ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
MONTH_DAY = re.compile(r"^(\w{3,})\.?\s+(\d{1,2})(?:,?\s+(\d{4}))?$")
DAYS_AGO = re.compile(r"^(\d+)\+?\s*(day|week|hour)s?\s*ago$", re.I)
AGE_SHORT = re.compile(r"^(\d+)([dhw])$", re.I)
EPOCH = re.compile(r"^\d{9,13}$")


def utcnow() -> datetime:
    """Naive UTC now; every timestamp the pipeline stores is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _from_epoch(value: float) -> datetime | None:
    # Some sources send milliseconds
    if value > 1e12:
        value /= 1000.0
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def parse_posted_date(value: Any, *, now: datetime | None = None) -> datetime | None:
    """Best-effort parse of the date shapes job sources send.

    Handles epoch seconds/milliseconds, ISO-8601, RFC-2822, US m/d/Y,
    "Oct 14" style month/day and relative ages ("3 days ago", "2w").
    Returns naive UTC or None when nothing matches.
    """
    now = to_naive_utc(now) if now else utcnow()

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))

    raw = str(value).strip()
    if not raw:
        return None

    if EPOCH.match(raw):
        return _from_epoch(float(raw))

    m = ISO_DATE.match(raw)
    if m:
        year, month, day = map(int, m.groups())
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    try:
        return to_naive_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        pass

    m = US_DATE.match(raw)
    if m:
        month, day, year = map(int, m.groups())
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    lowered = raw.lower()
    if lowered in ("today", "just posted", "just now"):
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if lowered == "yesterday":
        return (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)

    m = DAYS_AGO.match(raw)
    if m:
        amount = int(m.group(1))
        unit = m.group(2).lower()
        if unit == 'hour':
            return now.replace(hour=0, minute=0, second=0, microsecond=0)
        delta = timedelta(weeks=amount) if unit == 'week' else timedelta(days=amount)
        return (now - delta).replace(hour=0, minute=0, second=0, microsecond=0)

    m = AGE_SHORT.match(raw)
    if m:
        amount = int(m.group(1))
        unit = m.group(2).lower()
        if unit == 'd':
            return (now - timedelta(days=amount)).replace(hour=0, minute=0, second=0, microsecond=0)
        if unit == 'w':
            return (now - timedelta(weeks=amount)).replace(hour=0, minute=0, second=0, microsecond=0)
        return now.replace(hour=0, minute=0, second=0, microsecond=0)

    m = MONTH_DAY.match(raw)
    if m:
        month = MONTHS.get(m.group(1).lower()[:4].strip('. ')) or MONTHS.get(m.group(1).lower()[:3])
        if month is None:
            return None
        day = int(m.group(2))
        explicit_year = m.group(3)
        year = int(explicit_year) if explicit_year else now.year
        try:
            candidate = datetime(year, month, day)
        except ValueError:
            return None
        # "Dec 30" seen in early January belongs to last year
        if not explicit_year and candidate - now > timedelta(days=30):
            try:
                candidate = datetime(year - 1, month, day)
            except ValueError:
                return None
        return candidate

    try:
        return to_naive_utc(parsedate_to_datetime(raw))
    except (TypeError, ValueError, IndexError):
        return None

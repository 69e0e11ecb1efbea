"""Venue clock: civil (venue-local) time <-> absolute UTC instants.

All venues run on one fixed UTC offset with no daylight-saving
transitions, so conversions are plain offset arithmetic. Schedules are
stored as "HH:MM" wall-clock strings; every "minutes/hours until" value
is computed on aware UTC instants, never on the strings.
"""

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Mapping, Optional, Tuple, Union

from app.core.config import settings

VENUE_TZ = timezone(timedelta(hours=settings.venue_utc_offset_hours), name="America/Bogota")

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

DateLike = Union[date, datetime, str]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(instant: datetime) -> datetime:
    return ensure_utc(instant).astimezone(VENUE_TZ)


def today_local(now: Optional[datetime] = None) -> date:
    return to_local(now or now_utc()).date()


def parse_hhmm(value: str) -> Tuple[int, int]:
    """Parse "HH:MM" (24h). Raises ValueError on anything else."""
    if not isinstance(value, str):
        raise ValueError(f"Invalid time {value!r}")
    parts = value.strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time {value!r}")
    return hour, minute


def local_to_utc(day: date, hhmm: str) -> datetime:
    """Venue wall-clock ``hhmm`` on ``day`` as a UTC instant."""
    hour, minute = parse_hhmm(hhmm)
    local = datetime.combine(day, time(hour, minute), tzinfo=VENUE_TZ)
    return local.astimezone(timezone.utc)


def open_window(day: date, open_: str, close: str) -> Tuple[datetime, datetime]:
    """Open/close instants for a schedule entry starting on ``day``.

    A close time at or before the open time belongs to the next day.
    """
    open_utc = local_to_utc(day, open_)
    close_utc = local_to_utc(day, close)
    if close_utc <= open_utc:
        close_utc += timedelta(days=1)
    return open_utc, close_utc


def normalize_date_only(value: DateLike) -> datetime:
    """Anchor a date-only value at 12:00 venue time.

    Accepts ``date``, ``"YYYY-MM-DD"`` strings and midnight-UTC datetimes
    (how date-only values come back from JSON); the Y-M-D is kept as-is.
    Any other datetime is a real instant and is only converted.
    """
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    if isinstance(value, datetime):
        utc = ensure_utc(value)
        if utc.time() != time(0, 0):
            return utc
        value = utc.date()
    return datetime.combine(value, time(12, 0), tzinfo=VENUE_TZ).astimezone(timezone.utc)


def local_day(value: DateLike) -> date:
    """Venue-local calendar day a date-like value refers to."""
    return to_local(normalize_date_only(value)).date()


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def hours_for(open_hours: Optional[Iterable[Mapping]], weekday: str) -> Optional[Mapping]:
    """Schedule entry for ``weekday``, or None (treated as closed)."""
    for entry in open_hours or ():
        if entry.get("day") == weekday:
            return entry
    return None


def event_start(event_date: DateLike, event_open_hours: Optional[Mapping] = None) -> datetime:
    """Start instant of an event: its own open time, else local midnight."""
    day = local_day(event_date)
    open_ = (event_open_hours or {}).get("open")
    return local_to_utc(day, open_ or "00:00")


def event_window(
    event_date: DateLike, event_open_hours: Optional[Mapping] = None
) -> Optional[Tuple[datetime, datetime]]:
    """(start, end) of the event night when both open and close are known."""
    if not event_open_hours or not event_open_hours.get("open") or not event_open_hours.get("close"):
        return None
    return open_window(local_day(event_date), event_open_hours["open"], event_open_hours["close"])


def minutes_until(target: datetime, now: datetime) -> int:
    """Whole minutes from ``now`` to ``target``, halves rounded up."""
    seconds = (ensure_utc(target) - ensure_utc(now)).total_seconds()
    return math.floor(seconds / 60 + 0.5)


def hours_until(target: datetime, now: datetime) -> int:
    """Whole hours from ``now`` to ``target``, floored (negative once passed)."""
    seconds = (ensure_utc(target) - ensure_utc(now)).total_seconds()
    return math.floor(seconds / 3600)

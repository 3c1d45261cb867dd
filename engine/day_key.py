"""Calendar day keys (YYYYMMDD) used to index daily accounting snapshots."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from engine.errors import InvalidDayKey, InvalidRange

EPOCH_DAY_KEY = 19700101
_ONE_DAY = timedelta(days=1)


def _require_aware(value: datetime, name: str) -> datetime:
    if value.tzinfo is None:
        raise InvalidRange(f"{name} must include timezone offset.")
    return value.astimezone(timezone.utc)


def to_day_key(ts: datetime) -> int:
    """Return the UTC calendar day of ``ts`` as an integer such as 20240115."""
    utc_ts = _require_aware(ts, "ts")
    if utc_ts.year < 1970:
        raise InvalidRange(f"Timestamps before 1970-01-01 are not supported: {ts}.")
    return utc_ts.year * 10000 + utc_ts.month * 100 + utc_ts.day


def day_key_to_date(day_key: int) -> date:
    if not isinstance(day_key, int) or isinstance(day_key, bool):
        raise InvalidDayKey(f"Day key must be an int, got {day_key!r}.")
    if day_key < EPOCH_DAY_KEY:
        raise InvalidRange(f"Day key {day_key} is before 1970-01-01.")
    year, rest = divmod(day_key, 10000)
    month, day = divmod(rest, 100)
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise InvalidDayKey(f"Day key {day_key} is not a calendar date.") from exc


def day_key_to_day_start(day_key: int) -> datetime:
    """Return UTC midnight of the day encoded by ``day_key``."""
    day = day_key_to_date(day_key)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def days_between(from_ts: datetime, to_ts: datetime) -> int:
    """Whole days elapsed between two timestamps; fails when ``to_ts < from_ts``."""
    start = _require_aware(from_ts, "from_ts")
    end = _require_aware(to_ts, "to_ts")
    if end < start:
        raise InvalidRange(f"to_ts {to_ts} precedes from_ts {from_ts}.")
    return (end - start) // _ONE_DAY

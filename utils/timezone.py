"""Timestamps for link, session and account bookkeeping.

Everything is stored and compared in UTC. Naive datetimes are rejected
rather than guessed at.
"""

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Normalize an aware datetime to UTC. Raises ValueError for naive input."""
    if dt.tzinfo is None:
        raise ValueError(f"Refusing naive datetime {dt.isoformat()}; attach a timezone first")
    return dt.astimezone(timezone.utc)


def parse_iso(value: str) -> datetime:
    """Read back a timestamp written with ``isoformat()`` (e.g. from Valkey JSON).

    Accepts a trailing 'Z'. Raises ValueError when the string carries no
    timezone offset.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"Timestamp {value!r} has no timezone offset")
    return to_utc(parsed)


def is_past(moment: datetime) -> bool:
    """Whether moment (aware) is strictly before now."""
    return now_utc() > to_utc(moment)


def days_ago(days: int) -> datetime:
    """Retention cutoff: the UTC instant ``days`` days before now."""
    return now_utc() - timedelta(days=days)

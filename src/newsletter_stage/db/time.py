"""Clock helpers for timestamps written to the database.

All stored timestamps are UTC. SQLite drops the offset on write, so values
compared in SQL must come from these helpers rather than local time.
"""

from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    return datetime.now(UTC)


def seconds_from(start: datetime, seconds: float) -> datetime:
    """Return ``start`` shifted by ``seconds``; negative values point to the past."""
    return start + timedelta(seconds=seconds)

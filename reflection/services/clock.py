"""Time source for the engine. All timestamps are timezone-aware UTC."""

from datetime import datetime, timezone


class SystemClock:
    """Wall clock. Tests install a frozen clock with the same interface."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

"""Timezone helpers for values that round-trip through the database."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    """True once ``now`` has reached or passed ``expires_at``."""
    return (now or utcnow()) >= as_utc(expires_at)

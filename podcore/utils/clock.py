"""Time helpers. All stored timestamps are naive UTC."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)

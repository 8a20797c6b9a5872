"""UTC timestamp helpers. All persisted times are ISO 8601 with a Z suffix."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_iso(value: datetime) -> str:
    """Format an aware datetime as ISO 8601 with a Z suffix."""
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def now_iso() -> str:
    """Current UTC time as ISO 8601 string with Z suffix."""
    return to_iso(utc_now())


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp back into an aware datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def add_seconds(base: datetime, seconds: int) -> str:
    """Compute a deadline by adding seconds to a base time."""
    return to_iso(base + timedelta(seconds=seconds))


def has_passed(deadline: str, now: datetime | None = None) -> bool:
    """True once ``now`` has reached the deadline."""
    current = now if now is not None else utc_now()
    return current >= parse_iso(deadline)

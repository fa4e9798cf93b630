"""Centralized datetime utilities for consistent timezone handling.

Database columns hold naive UTC datetimes. Everything else in the dispatch
core works with aware datetimes and converts at the storage edge.

Usage:
    from statmail.core.datetime_utils import parse_reference_instant, to_local

    instant = parse_reference_instant("2026-10-19T13:15:00Z")
    local = to_local(instant, site.timezone)
"""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from statmail.core.errors import ConfigurationError


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def aware_utc_now() -> datetime:
    """Get current UTC time as an aware datetime.

    Only trigger boundaries should call this; the dispatch core receives
    the reference instant explicitly.
    """
    return datetime.now(UTC)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    # Convert to UTC and strip timezone
    return dt.astimezone(UTC).replace(tzinfo=None)


def to_aware_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; normalize aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is valid IANA identifier.

    Args:
        tz_name: Timezone string (e.g., "America/New_York")

    Returns:
        True if valid IANA timezone
    """
    try:
        ZoneInfo(tz_name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def get_zone(tz_name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Unlike the lenient helpers elsewhere, an unknown zone is a configuration
    problem here and is never silently replaced by UTC.

    Raises:
        ConfigurationError: If the name is not a valid IANA timezone
    """
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid timezone: {tz_name!r}") from e


def to_local(instant: datetime, tz_name: str) -> datetime:
    """Convert an instant to wall-clock time in the given timezone.

    Naive instants are treated as UTC.
    """
    return to_aware_utc(instant).astimezone(get_zone(tz_name))


def parse_reference_instant(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z". Timestamps without an offset are taken as UTC.

    Raises:
        ConfigurationError: If the value is not a parsable ISO-8601 timestamp
    """
    text = value.strip() if isinstance(value, str) else value
    if not text:
        raise ConfigurationError("Empty reference instant")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Unparsable reference instant: {value!r}") from e
    return to_aware_utc(parsed)

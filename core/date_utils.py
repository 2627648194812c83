"""
Centralized date and time utilities.

All timestamps are handled as timezone-aware datetime objects, defaulting to
UTC. GPS fixes arrive from the capture pipeline as ISO 8601 strings or
datetimes; the matching engine wants unix seconds.
"""

import logging
from datetime import UTC, datetime

from dateutil import parser

logger = logging.getLogger(__name__)


def get_current_utc_time() -> datetime:
    """Return the current time as a timezone-aware datetime object in UTC."""
    return datetime.now(UTC)


def parse_timestamp(ts: str | datetime | None) -> datetime | None:
    """
    Parse a timestamp string (or datetime object) and ensure it is
    timezone-aware, defaulting to UTC.

    Args:
        ts: The timestamp to parse, either as an ISO 8601 string or a
            datetime object.

    Returns:
        A timezone-aware datetime object, or None if parsing fails.
    """
    if not ts:
        return None

    if isinstance(ts, datetime):
        return ensure_utc(ts)

    try:
        parsed_time = parser.isoparse(ts)
    except (ValueError, TypeError) as e:
        logger.warning("Failed to parse timestamp '%s': %s", ts, e)
        return None
    return ensure_utc(parsed_time)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return the datetime as an explicit UTC-aware value."""
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def to_unix_seconds(dt: datetime) -> int:
    """Whole unix seconds for a datetime, naive values taken as UTC."""
    aware = ensure_utc(dt)
    return int(aware.timestamp()) if aware else 0

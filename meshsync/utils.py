"""
Timestamp helpers shared by the sync engine and the CRUD routes.
"""

import logging
import re
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

# ISO 8601 (anything may follow the seconds) or SQL-style "YYYY-MM-DD HH:MM:SS"
ISO_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
SQL_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

TIMESTAMP_FORMAT_HINT = "Use ISO 8601 or YYYY-MM-DD HH:MM:SS"


def parse_timestamp(value: str) -> datetime:
    """
    Parse a client-asserted timestamp into an aware UTC datetime.

    Accepts the two shapes devices emit: ISO 8601 (``2024-01-01T00:00:00``,
    optionally with fraction and offset or ``Z``) and ``2024-01-01 00:00:00``.
    Timestamps without an offset are taken as UTC.

    Args:
        value: Timestamp string as submitted

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ValueError: If the shape is not accepted or the instant does not exist
    """
    if not isinstance(value, str):
        raise ValueError("timestamp must be a string")
    if not ISO_TIMESTAMP_RE.match(value) and not SQL_TIMESTAMP_RE.match(value):
        raise ValueError(f"unrecognised timestamp shape: {value!r}")

    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"timestamp out of range: {value!r}") from e


def is_valid_timestamp(value: str) -> bool:
    """Check whether a value is an accepted, real timestamp."""
    try:
        parse_timestamp(value)
    except ValueError as e:
        logger.debug(f"Rejected timestamp {value!r}: {e}")
        return False
    return True


def to_epoch_ms(value: str) -> int:
    """
    Convert a timestamp string to UTC epoch milliseconds.

    Raises:
        ValueError: If the timestamp cannot be parsed
    """
    return (parse_timestamp(value) - EPOCH) // timedelta(milliseconds=1)


def utc_now_iso() -> str:
    """
    Current server time as fixed-width ISO-8601 UTC with microseconds.

    Fixed width keeps lexical ordering identical to time ordering.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

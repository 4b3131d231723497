"""
Validated form of a message submitted in a sync batch.

Batch payloads are validated record by record so that one malformed entry
does not reject the whole batch; see sync.py.
"""

from dataclasses import dataclass
from typing import Any, Optional

from meshsync.errors import RecordValidationError
from meshsync.utils import TIMESTAMP_FORMAT_HINT, to_epoch_ms

REQUIRED_FIELDS = ("id", "device_id", "content", "timestamp")


@dataclass(frozen=True)
class MessageRecord:
    """A submitted message that passed validation."""
    id: str
    device_id: str
    content: str
    timestamp: str
    event_ms: int
    lat: Optional[float] = None
    lon: Optional[float] = None

    def mutable_fields(self) -> dict:
        """Columns a conflict update overwrites on the stored row."""
        return {
            "content": self.content,
            "lat": self.lat,
            "lon": self.lon,
            "timestamp": self.timestamp,
            "event_ms": self.event_ms,
        }


def reported_id(raw: Any) -> str:
    """Id to quote in an error entry, or "unknown" if there is none."""
    if isinstance(raw, dict):
        value = raw.get("id")
        if isinstance(value, str) and value:
            return value
    return "unknown"


def _coordinate(raw: dict, name: str, bound: float) -> Optional[float]:
    value = raw.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RecordValidationError(f"{name} must be a number")
    if not -bound <= value <= bound:
        raise RecordValidationError(f"{name} must be between -{bound:g} and {bound:g}")
    return float(value)


def validate_record(raw: Any) -> MessageRecord:
    """
    Validate one raw batch entry.

    Args:
        raw: Entry from the submitted ``messages`` array

    Returns:
        MessageRecord with the timestamp parsed to epoch milliseconds

    Raises:
        RecordValidationError: With a reason naming what is wrong
    """
    if not isinstance(raw, dict):
        raise RecordValidationError("Record must be a JSON object")

    missing = [field for field in REQUIRED_FIELDS if raw.get(field) in (None, "")]
    if missing:
        raise RecordValidationError(f"Missing required fields: {', '.join(missing)}")

    not_strings = [field for field in REQUIRED_FIELDS if not isinstance(raw[field], str)]
    if not_strings:
        raise RecordValidationError(f"Fields must be strings: {', '.join(not_strings)}")

    try:
        event_ms = to_epoch_ms(raw["timestamp"])
    except ValueError:
        raise RecordValidationError(f"Invalid timestamp format. {TIMESTAMP_FORMAT_HINT}")

    lat = _coordinate(raw, "lat", 90)
    lon = _coordinate(raw, "lon", 180)
    if (lat is None) != (lon is None):
        raise RecordValidationError("lat and lon must be provided together")

    return MessageRecord(
        id=raw["id"],
        device_id=raw["device_id"],
        content=raw["content"],
        timestamp=raw["timestamp"],
        event_ms=event_ms,
        lat=lat,
        lon=lon,
    )

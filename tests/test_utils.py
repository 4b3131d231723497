"""
Tests for timestamp parsing and per-message validation.
"""

from datetime import datetime, timezone

import pytest

from meshsync.errors import RecordValidationError
from meshsync.records import reported_id, validate_record
from meshsync.utils import is_valid_timestamp, parse_timestamp, to_epoch_ms, utc_now_iso


class TestParseTimestamp:

    @pytest.mark.parametrize("value", [
        "2024-01-01T00:00:00",
        "2024-01-01T00:00:00Z",
        "2024-01-01T00:00:00.123Z",
        "2024-01-01T05:30:00+05:30",
        "2024-01-01 00:00:00",
    ])
    def test_accepted_shapes(self, value):
        parsed = parse_timestamp(value)

        assert parsed.replace(microsecond=0) == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert parsed.utcoffset().total_seconds() == 0

    @pytest.mark.parametrize("value", [
        "2024-01-01",
        "01/01/2024 00:00:00",
        "2024-01-01 00:00:00Z",
        "2024-01-01T00:00",
        "2024-02-30T00:00:00",
        "2024-01-01T25:00:00",
        "9999-12-31T23:59:59-01:00",
        "0001-01-01T00:00:00+01:00",
        "",
    ])
    def test_rejected(self, value):
        assert is_valid_timestamp(value) is False

    def test_non_string_rejected(self):
        assert is_valid_timestamp(1704067200) is False

    def test_epoch_ms_is_exact(self):
        assert to_epoch_ms("1970-01-01T00:00:01.001Z") == 1001
        assert to_epoch_ms("2024-01-01T00:00:04.999Z") - to_epoch_ms("2024-01-01T00:00:00Z") == 4999

    def test_out_of_range_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_timestamp("9999-12-31T23:59:59-01:00")

    def test_naive_is_utc(self):
        assert to_epoch_ms("2024-01-01 00:00:00") == to_epoch_ms("2024-01-01T00:00:00Z")

    def test_now_is_fixed_width(self):
        assert len(utc_now_iso()) == len("2024-01-01T00:00:00.000000Z")


class TestValidateRecord:

    def valid(self, **overrides) -> dict:
        body = {"id": "m1", "device_id": "dev-a", "content": "hi", "timestamp": "2024-01-01T00:00:00Z"}
        body.update(overrides)
        return body

    def test_valid(self):
        record = validate_record(self.valid(lat=1, lon=-2.5))

        assert record.id == "m1"
        assert record.event_ms == to_epoch_ms("2024-01-01T00:00:00Z")
        assert record.lat == 1.0
        assert record.lon == -2.5

    def test_location_optional(self):
        record = validate_record(self.valid())

        assert record.lat is None
        assert record.lon is None

    def test_zero_coordinates_kept(self):
        record = validate_record(self.valid(lat=0, lon=0))

        assert record.lat == 0.0
        assert record.lon == 0.0

    @pytest.mark.parametrize("raw, reason", [
        ({}, "Missing required fields: id, device_id, content, timestamp"),
        ({"id": "m1", "device_id": "", "content": "hi", "timestamp": "2024-01-01T00:00:00Z"},
         "Missing required fields: device_id"),
        ({"id": 7, "device_id": "d", "content": "hi", "timestamp": "2024-01-01T00:00:00Z"},
         "Fields must be strings: id"),
        ({"id": "m1", "device_id": "d", "content": "hi", "timestamp": "noon"},
         "Invalid timestamp format. Use ISO 8601 or YYYY-MM-DD HH:MM:SS"),
        ({"id": "m1", "device_id": "d", "content": "hi", "timestamp": "0001-01-01T00:00:00+01:00"},
         "Invalid timestamp format. Use ISO 8601 or YYYY-MM-DD HH:MM:SS"),
        (["m1"], "Record must be a JSON object"),
    ])
    def test_invalid(self, raw, reason):
        with pytest.raises(RecordValidationError) as exc_info:
            validate_record(raw)

        assert str(exc_info.value) == reason

    @pytest.mark.parametrize("overrides, reason", [
        ({"lat": 10.0}, "lat and lon must be provided together"),
        ({"lon": 10.0}, "lat and lon must be provided together"),
        ({"lat": "10", "lon": "20"}, "lat must be a number"),
        ({"lat": 91, "lon": 0}, "lat must be between -90 and 90"),
        ({"lat": 0, "lon": 180.5}, "lon must be between -180 and 180"),
        ({"lat": True, "lon": 0}, "lat must be a number"),
    ])
    def test_invalid_location(self, overrides, reason):
        with pytest.raises(RecordValidationError) as exc_info:
            validate_record(self.valid(**overrides))

        assert str(exc_info.value) == reason

    def test_location_at_bounds(self):
        record = validate_record(self.valid(lat=-90, lon=180))

        assert (record.lat, record.lon) == (-90.0, 180.0)

    def test_reported_id(self):
        assert reported_id({"id": "m1"}) == "m1"
        assert reported_id({"id": ""}) == "unknown"
        assert reported_id({"id": 5}) == "unknown"
        assert reported_id("m1") == "unknown"

from datetime import UTC, datetime, timedelta, timezone

import pytest

from errors import ValidationError
from utils import parse_timestamp


@pytest.mark.parametrize("value,expected", [
    ("2030-01-01T10:00:00Z", datetime(2030, 1, 1, 10, tzinfo=UTC)),
    ("2030-01-01T12:00:00+02:00", datetime(2030, 1, 1, 10, tzinfo=UTC)),
    ("2030-01-01T10:00:00.250-05:00", datetime(2030, 1, 1, 15, 0, 0, 250000, tzinfo=UTC)),
])
def test_parse_timestamp_accepts_rfc3339(value, expected):
    parsed = parse_timestamp(value)
    assert parsed == expected
    assert parsed.tzinfo is not None


def test_parse_timestamp_keeps_offset():
    parsed = parse_timestamp("2030-01-01T12:00:00+02:00")
    assert parsed.utcoffset() == timezone(timedelta(hours=2)).utcoffset(None)


@pytest.mark.parametrize("value", [
    "2030-01-01 10:00:00+00:00",
    "20300101T100000Z",
    "2030-01-01T10:00Z",
    "2030-01-01T10:00:00",
    "2030-01-01",
    "2030-13-01T10:00:00Z",
    "next tuesday",
    "",
])
def test_parse_timestamp_rejects_other_shapes(value):
    with pytest.raises(ValidationError, match="invalid dueDate, use RFC3339"):
        parse_timestamp(value, "dueDate")

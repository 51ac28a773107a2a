from datetime import datetime, time, timedelta, timezone

import pytest

from tool_lock.utils.time import (
    format_duration_seconds,
    normalize_time_of_day,
    parse_time_string,
    seconds_until,
)


def test_parse_time_string():
    # Test various formats
    assert parse_time_string("8pm").time() == time(20, 0)
    assert parse_time_string("8:30pm").time() == time(20, 30)
    assert parse_time_string("20:00").time() == time(20, 0)
    assert parse_time_string("08:00").time() == time(8, 0)

    with pytest.raises(ValueError):
        parse_time_string("invalid")


@pytest.mark.parametrize(
    "raw, expected",
    [("9am", "09:00"), ("9:05 PM", "21:05"), ("7:30", "07:30"), ("23:59", "23:59")],
)
def test_normalize_time_of_day(raw, expected):
    assert normalize_time_of_day(raw) == expected


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0m"), (30, "<1m"), (45 * 60, "45m"), (150 * 60, "2h 30m")],
)
def test_format_duration_seconds(seconds, expected):
    assert format_duration_seconds(seconds) == expected


def test_seconds_until():
    now = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert seconds_until(now + timedelta(minutes=2), now) == 120
    assert seconds_until(now - timedelta(minutes=2), now) == 0
    assert seconds_until(None, now) == 0

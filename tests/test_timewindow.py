from datetime import date, datetime

import pytest

from services.errors import ConfigurationError, ValidationError
from utils.timewindow import (
    TimeWindow, day_bounds, parse_date, parse_instant, parse_window, resolve_zone, zone_clock,
)


def test_duration_window():
    w = parse_window("2024-06-01", "10:00", duration=60)
    assert w.start == datetime(2024, 6, 1, 10, 0)
    assert w.end == datetime(2024, 6, 1, 11, 0)
    assert w.duration_minutes == 60


def test_end_time_window():
    w = parse_window("2024-06-01", "10:30", end_time="11:00")
    assert w == TimeWindow(datetime(2024, 6, 1, 10, 30), datetime(2024, 6, 1, 11, 0))


def test_duration_as_string_is_accepted():
    assert parse_window("2024-06-01", "09:00", duration="45").duration_minutes == 45


def test_duration_can_cross_midnight():
    w = parse_window("2024-06-01", "23:30", duration=60)
    assert w.end == datetime(2024, 6, 2, 0, 30)


def test_duration_and_end_time_must_agree():
    assert parse_window("2024-06-01", "10:00", duration=60, end_time="11:00").duration_minutes == 60
    with pytest.raises(ValidationError):
        parse_window("2024-06-01", "10:00", duration=60, end_time="11:30")


@pytest.mark.parametrize("duration", [29, 121, 0, -30])
def test_duration_outside_bounds_is_rejected(duration):
    with pytest.raises(ValidationError):
        parse_window("2024-06-01", "10:00", duration=duration)


def test_bounds_are_inclusive():
    assert parse_window("2024-06-01", "10:00", duration=30).duration_minutes == 30
    assert parse_window("2024-06-01", "10:00", duration=120).duration_minutes == 120


def test_end_not_after_start_is_rejected():
    with pytest.raises(ValidationError):
        parse_window("2024-06-01", "10:00", end_time="10:00")
    with pytest.raises(ValidationError):
        parse_window("2024-06-01", "10:00", end_time="09:00")


@pytest.mark.parametrize("day,start", [
    ("2024-13-01", "10:00"),
    ("01/06/2024", "10:00"),
    ("", "10:00"),
    ("2024-06-01", "25:00"),
    ("2024-06-01", "10am"),
    ("2024-06-01", None),
])
def test_malformed_input_is_rejected(day, start):
    with pytest.raises(ValidationError):
        parse_window(day, start, duration=60)


def test_missing_duration_and_end_time():
    with pytest.raises(ValidationError):
        parse_window("2024-06-01", "10:00")


def test_non_integer_duration():
    with pytest.raises(ValidationError):
        parse_window("2024-06-01", "10:00", duration="an hour")
    with pytest.raises(ValidationError):
        parse_window("2024-06-01", "10:00", duration=True)


def test_half_open_overlap():
    a = TimeWindow(datetime(2024, 6, 1, 10), datetime(2024, 6, 1, 11))
    adjacent = TimeWindow(datetime(2024, 6, 1, 11), datetime(2024, 6, 1, 11, 30))
    inside = TimeWindow(datetime(2024, 6, 1, 10, 30), datetime(2024, 6, 1, 11))
    assert not a.overlaps(adjacent)
    assert not adjacent.overlaps(a)
    assert a.overlaps(inside)
    assert a.contains(datetime(2024, 6, 1, 10))
    assert not a.contains(datetime(2024, 6, 1, 11))


def test_day_bounds_and_parse_date():
    assert parse_date("2024-06-01") == date(2024, 6, 1)
    bounds = day_bounds(date(2024, 6, 1))
    assert bounds.start == datetime(2024, 6, 1)
    assert bounds.end == datetime(2024, 6, 2)


@pytest.mark.parametrize("name", ["Mars/Olympus", "Europe/Atlantis", "../etc/passwd"])
def test_unknown_zone_is_a_configuration_error(name):
    with pytest.raises(ConfigurationError):
        resolve_zone(name)


def test_zone_clock_is_naive_wall_clock():
    now = zone_clock(resolve_zone("Asia/Kolkata"))()
    assert now.tzinfo is None


def test_parse_instant():
    zone = resolve_zone("Asia/Kolkata")
    assert parse_instant("2024-06-01T10:15", zone) == datetime(2024, 6, 1, 10, 15)
    # offsets are converted into platform wall-clock time
    assert parse_instant("2024-06-01T10:15+00:00", zone) == datetime(2024, 6, 1, 15, 45)


@pytest.mark.parametrize("value", ["", "   ", None, "2024-13-01T10:00", "tomorrow"])
def test_parse_instant_rejects_garbage(value):
    with pytest.raises(ValidationError):
        parse_instant(value, resolve_zone("UTC"))

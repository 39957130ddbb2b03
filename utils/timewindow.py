"""
Date/time parsing for reservation windows.

All windows are naive wall-clock datetimes in the platform time zone
(PLATFORM_TIMEZONE) and are half-open: [start, end).
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from services.errors import ConfigurationError, ValidationError

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


@dataclass(frozen=True, order=True)
class TimeWindow:
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def to_dict(self):
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def parse_date(value) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("date is required (YYYY-MM-DD)")
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValidationError("Invalid date. Use YYYY-MM-DD")


def parse_time(value, field: str = "startTime") -> time:
    if isinstance(value, time):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required (HH:MM)")
    try:
        return datetime.strptime(value.strip(), TIME_FORMAT).time()
    except ValueError:
        raise ValidationError(f"Invalid {field}. Use HH:MM (24h)")


def _parse_duration(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("duration must be a whole number of minutes")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError("duration must be a whole number of minutes")


def day_bounds(day: date) -> TimeWindow:
    start = datetime.combine(day, time.min)
    return TimeWindow(start, start + timedelta(days=1))


def parse_window(day, start_time, duration=None, end_time=None,
                 min_minutes: int = 30, max_minutes: int = 120) -> TimeWindow:
    """
    Build a TimeWindow from a date, a start time and either a duration in
    minutes or an end time. A duration may carry the window past midnight;
    an explicit end time must be later on the same date.
    """
    d = parse_date(day)
    start = datetime.combine(d, parse_time(start_time, "startTime"))

    if duration is None and end_time is None:
        raise ValidationError("duration or endTime is required")

    end_from_time = None
    if end_time is not None:
        end_from_time = datetime.combine(d, parse_time(end_time, "endTime"))
        if end_from_time <= start:
            raise ValidationError("endTime must be after startTime")

    if duration is not None:
        minutes = _parse_duration(duration)
        end = start + timedelta(minutes=minutes)
        if end_from_time is not None and end_from_time != end:
            raise ValidationError("duration does not match startTime/endTime")
    else:
        end = end_from_time

    window = TimeWindow(start, end)
    if window.end <= window.start:
        raise ValidationError("Booking window must end after it starts")
    if not (min_minutes <= window.duration_minutes <= max_minutes):
        raise ValidationError(
            f"Duration must be between {min_minutes} and {max_minutes} minutes",
            duration=window.duration_minutes,
        )
    return window


def resolve_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ConfigurationError(f"Unknown PLATFORM_TIMEZONE {tz_name!r}")


def zone_clock(zone: ZoneInfo):
    """Clock returning the current naive wall-clock time in `zone`."""
    def now() -> datetime:
        return datetime.now(zone).replace(tzinfo=None)
    return now


def parse_instant(value, zone: ZoneInfo) -> datetime:
    """
    ISO 8601 instant from a client, e.g. 2024-06-01T10:15. Naive values are
    platform wall-clock time; aware ones are converted into `zone`.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Expected a date-time like 2024-06-01T10:15")
    try:
        instant = datetime.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError("Invalid date-time. Use YYYY-MM-DDTHH:MM")
    if instant.tzinfo is not None:
        instant = instant.astimezone(zone).replace(tzinfo=None)
    return instant

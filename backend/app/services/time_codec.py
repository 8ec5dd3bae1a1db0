import re
from datetime import date

from app.services.errors import InvalidDate, InvalidTimeFormat

MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^\d{2}:\d{2}$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def to_minutes(value: str, *, field: str = "time") -> int:
    """Convert "HH:MM" to minutes since midnight; "24:00" is end of day."""
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise InvalidTimeFormat(value, field=field)
    hours, minutes = int(value[:2]), int(value[3:])
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise InvalidTimeFormat(value, field=field)
    return hours * 60 + minutes


def to_time_string(minutes: int, *, field: str = "time") -> str:
    if isinstance(minutes, bool) or not isinstance(minutes, int) or not 0 <= minutes <= MINUTES_PER_DAY:
        raise InvalidTimeFormat(minutes, field=field)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value: str, *, field: str = "date") -> date:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise InvalidDate(value, field=field)
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidDate(value, field=field) from exc


def normalize_time(value: str, *, field: str = "time") -> str:
    return to_time_string(to_minutes(value, field=field), field=field)

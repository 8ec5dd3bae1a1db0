from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app import settings
from app.services.errors import InvalidDate, InvalidTimezone
from app.services.time_codec import parse_date


def get_zone(name: Optional[str] = None) -> ZoneInfo:
    tz_name = (name or "").strip() or settings.DEFAULT_TIMEZONE
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezone(tz_name) from exc


def local_date(value: Union[str, date, datetime], tz_name: Optional[str] = None) -> date:
    """Calendar day in the provider's zone.

    A bare YYYY-MM-DD is already a provider-local day and is returned as is.
    Timestamps with an offset are converted into the zone first; naive
    timestamps are read as provider-local wall time.
    """
    zone = get_zone(tz_name)
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        return value
    elif isinstance(value, str) and len(value.strip()) == 10:
        return parse_date(value.strip())
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise InvalidDate(value) from exc
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(zone).date()


def resolve_day_of_week(value: Union[str, date, datetime], tz_name: Optional[str] = None) -> int:
    """Weekday in the provider's zone, 0 = Sunday through 6 = Saturday."""
    return local_date(value, tz_name).isoweekday() % 7


def today_in(tz_name: Optional[str] = None) -> date:
    return datetime.now(timezone.utc).astimezone(get_zone(tz_name)).date()

"""Time helpers: the injectable clock and local date/time composition."""
from datetime import date, datetime, time, timezone
from functools import lru_cache
from typing import Callable
from zoneinfo import ZoneInfo

# A clock is any zero-argument callable returning an aware datetime
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache(maxsize=None)
def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def as_date(value) -> date:
    """Calendar date of a stored date-only value.

    Datetimes are read through their UTC fields: a DATE that reaches us as a
    UTC-midnight timestamp must keep its day whatever the process timezone is.
    Naive datetimes are taken as UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def compose_local(date_value, hour: int, tz: str) -> datetime:
    """`hour`:00:00 on the calendar date of `date_value` in timezone `tz`"""
    day = as_date(date_value)
    return datetime.combine(day, time(hour=hour), tzinfo=get_zone(tz))


def local_today(now: datetime, tz: str) -> date:
    """The hotel's calendar date at instant `now`"""
    return now.astimezone(get_zone(tz)).date()

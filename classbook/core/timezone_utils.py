"""
Timezone utilities.

Slots are stored as naive facility-local dates and times, so "now" must be
taken in the facility timezone before comparing against them.
"""

from datetime import date, datetime, time, timedelta

import pytz

from classbook.core.config import get_settings


def get_facility_timezone() -> pytz.BaseTzInfo:
    return pytz.timezone(get_settings().FACILITY_TIMEZONE)


def facility_now() -> datetime:
    """Current naive datetime in the facility timezone"""
    return datetime.now(get_facility_timezone()).replace(tzinfo=None)


def facility_today() -> date:
    return facility_now().date()


def to_facility_time(moment: datetime) -> datetime:
    """Naive facility-local datetime for a naive UTC ``moment``"""
    return pytz.utc.localize(moment).astimezone(get_facility_timezone()).replace(tzinfo=None)


def week_start(day: date) -> date:
    """Monday of the week containing ``day``"""
    return day - timedelta(days=day.weekday())


def combine(day: date, at: time) -> datetime:
    return datetime.combine(day, at)


def minutes_between(start: time, end: time) -> int:
    delta = datetime.combine(date.min, end) - datetime.combine(date.min, start)
    return int(delta.total_seconds() // 60)

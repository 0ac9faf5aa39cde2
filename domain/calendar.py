"""Calendar helpers for reservation dates.

All reservations live on a fixed local calendar: dates carry no time of day
and weekdays are numbered 0 (Sunday) to 6 (Saturday).
"""
import calendar
import re
from datetime import date, datetime, timedelta
from typing import Union

from domain.enums import Weekday
from domain.exceptions import ValidationError

_DATE_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def parse_calendar_date(value: str, field: str = "date") -> date:
    """Parse a strict YYYY-MM-DD string; surrounding whitespace is rejected"""
    if not isinstance(value, str) or not _DATE_PATTERN.fullmatch(value):
        raise ValidationError(f"Invalid {field} format. Use YYYY-MM-DD", field=field)
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value} is not a calendar date", field=field)


def coerce_date(value: Union[date, str], field: str = "date") -> date:
    """Accept a date or a YYYY-MM-DD string"""
    if isinstance(value, datetime):
        raise ValidationError(f"Invalid {field} format. Use YYYY-MM-DD", field=field)
    if isinstance(value, date):
        return value
    return parse_calendar_date(value, field)


def today() -> date:
    return date.today()


def add_weeks(value: date, weeks: int) -> date:
    return value + timedelta(weeks=weeks)


def day_of_week(value: date) -> Weekday:
    """0 = Sunday ... 6 = Saturday"""
    return Weekday((value.weekday() + 1) % 7)


def months_after(value: date, months: int) -> date:
    """Same day `months` later, clamped to the end of the target month"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value.day, last_day))

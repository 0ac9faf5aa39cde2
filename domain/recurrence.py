"""Weekly recurrence generation"""
from datetime import date, timedelta
from typing import List

from domain.calendar import add_weeks, day_of_week


def generate_occurrences(start: date, weekday: int, end_inclusive: date) -> List[date]:
    """Every date from `start` to `end_inclusive` falling on `weekday` (0 = Sunday).

    The caller is responsible for bounding `end_inclusive`.
    """
    current = start
    while day_of_week(current) != weekday and current <= end_inclusive:
        current += timedelta(days=1)

    occurrences = []
    while current <= end_inclusive:
        occurrences.append(current)
        current = add_weeks(current, 1)
    return occurrences

import math
from datetime import datetime


def billable_hours(start: datetime, end: datetime) -> int:
    """Whole hours charged for [start, end): partial hours round up, minimum one."""
    if end < start:
        raise ValueError("end must not be before start")
    minutes = (end - start).total_seconds() / 60
    return max(1, math.ceil(minutes / 60))


def calculate_fee(hourly_rate: float, start: datetime, end: datetime) -> float:
    if hourly_rate < 0:
        raise ValueError("hourly rate cannot be negative")
    return hourly_rate * billable_hours(start, end)

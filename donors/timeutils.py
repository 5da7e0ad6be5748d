"""
Date arithmetic for the scorers.

Day and month differences use different units and rounding rules and are
kept as two separate functions.
"""
import math
from datetime import date, datetime, time, timezone as dt_timezone

from dateutil import parser as date_parser
from django.utils import timezone

SECONDS_PER_DAY = 86400


def as_aware_datetime(value):
    """Coerce a date, datetime or ISO string to an aware UTC datetime"""
    if value is None:
        return None
    if isinstance(value, str):
        value = date_parser.isoparse(value)
    if not isinstance(value, datetime):
        if not isinstance(value, date):
            raise TypeError(f"Expected a date, datetime or ISO string, got {type(value).__name__}")
        value = datetime.combine(value, time.min)
    if timezone.is_naive(value):
        value = value.replace(tzinfo=dt_timezone.utc)
    return value


def days_difference(first, second):
    """Whole days between two instants, rounded up; equal instants give 0"""
    delta = as_aware_datetime(first) - as_aware_datetime(second)
    return math.ceil(abs(delta.total_seconds()) / SECONDS_PER_DAY)


def months_difference(first, second):
    """Calendar months from ``second`` to ``first``; may be negative"""
    first = as_aware_datetime(first)
    second = as_aware_datetime(second)
    return (first.year - second.year) * 12 + (first.month - second.month)

from dataclasses import dataclass
from typing import Optional

from carecircle.exceptions import ValidationError

RED = 'RED'
PINK = 'PINK'
WHITE = 'WHITE'

TIMEFRAME_BANDS = {
    'immediate': RED,
    'within_2_hours': RED,
    'within_24_hours': PINK,
    'after_24_hours': WHITE,
}


@dataclass(frozen=True)
class Classification:
    urgency_band: str
    emergency_warning: bool


@dataclass(frozen=True)
class TimeoutThresholds:
    # Minutes; None means no timeout
    view_timeout: Optional[int]
    response_timeout: Optional[int]


TIMEOUT_THRESHOLDS = {
    RED: TimeoutThresholds(view_timeout=10, response_timeout=20),
    PINK: TimeoutThresholds(view_timeout=None, response_timeout=30),
    WHITE: TimeoutThresholds(view_timeout=None, response_timeout=None),
}


def classify(timeframe):
    if not timeframe:
        raise ValidationError('timeframe is mandatory')
    # Unknown timeframes are treated as the least urgent band
    band = TIMEFRAME_BANDS.get(timeframe, WHITE)
    return Classification(urgency_band=band, emergency_warning=band == RED)


def is_valid_timeframe(value):
    return isinstance(value, str) and value in TIMEFRAME_BANDS


def timeout_thresholds(urgency_band):
    return TIMEOUT_THRESHOLDS.get(urgency_band, TIMEOUT_THRESHOLDS[WHITE])

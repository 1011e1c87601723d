"""
Effort estimate for worklog suggestions.

The estimate grows with the amount of matching activity on an issue and is deliberately coarse: it is offered to a
person for review, never logged automatically.
"""
from typing import Iterable

BASE_HOURS = 0.75
PER_HISTORY_HOURS = 0.35
MAX_HISTORY_HOURS = 1.75
PER_FIELD_HOURS = 0.15
MAX_FIELD_HOURS = 1.0
PER_COMMENT_HOURS = 0.25
MAX_COMMENT_HOURS = 1.0
STATUS_CHANGE_BONUS = 0.25
MAX_HOURS = 6.0
MIN_HOURS = 0.25

STATUS_FIELDS = ('status', 'resolution')


def round_to_quarter(hours: float) -> float:
    return max(MIN_HOURS, round(hours * 4) / 4)


def estimate_suggestion_hours(history_count: int, changed_fields: Iterable[str], comment_count: int) -> float:
    """Return a duration in hours within [0.25, 6], always a multiple of 0.25."""
    fields = {(f or '').strip().lower() for f in changed_fields if f and f.strip()}
    hours = BASE_HOURS
    hours += min(MAX_HISTORY_HOURS, PER_HISTORY_HOURS * max(0, history_count))
    hours += min(MAX_FIELD_HOURS, PER_FIELD_HOURS * len(fields))
    hours += min(MAX_COMMENT_HOURS, PER_COMMENT_HOURS * max(0, comment_count))
    if fields.intersection(STATUS_FIELDS):
        hours += STATUS_CHANGE_BONUS
    return round_to_quarter(min(MAX_HOURS, hours))


def hours_to_seconds(hours: float) -> int:
    return int(round(hours * 3600))

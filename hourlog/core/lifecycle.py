"""Day lifecycle classification.

A day is PLANNING before it arrives, EXECUTION while it is today and
HISTORY once it has passed. Sweeping is a one-way gate: a swept day stays
HISTORY no matter what "today" a later reader supplies.
"""

from __future__ import annotations

from hourlog.core.dates import compare_date_keys
from hourlog.data.models import DailyLog, DailyLogStatus


def classify(date: str, today: str) -> DailyLogStatus:
    cmp = compare_date_keys(date, today)
    if cmp < 0:
        return DailyLogStatus.HISTORY
    if cmp == 0:
        return DailyLogStatus.EXECUTION
    return DailyLogStatus.PLANNING


def reconcile_status(day: DailyLog, today: str) -> DailyLogStatus:
    """The status day should carry when read on today."""
    if day.is_swept:
        return DailyLogStatus.HISTORY
    return classify(day.date, today)

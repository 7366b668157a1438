"""Daily score — pure business logic.

Turns completion counters into a 0-100 score. The same function produces
the live preview of an open day and the frozen score written at sweep time.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import math
from typing import Iterable

from hourlog.data.models import Todo

# Score for a day with no estimated minutes but at least one finished todo.
UNESTIMATED_COMPLETION_SCORE = 80


def _non_negative_int(value: float) -> int:
    return max(0, math.floor(value))


def compute_daily_score(
    total_estimated_minutes: float,
    completed_estimated_minutes: float,
    completed_count: int,
) -> int:
    """Percentage of estimated minutes completed, rounded half-up.

    Args:
        total_estimated_minutes: Sum of estimates over every todo of the day.
        completed_estimated_minutes: Sum of estimates over finished todos.
        completed_count: Number of finished todos.

    Returns:
        An int in [0, 100]. With no estimates at all the day scores 80 if
        anything was finished, else 0.
    """
    total = _non_negative_int(total_estimated_minutes)
    done = _non_negative_int(completed_estimated_minutes)

    if total == 0:
        return UNESTIMATED_COMPLETION_SCORE if completed_count > 0 else 0

    # round(100 * done / total) with halves going up, in integer arithmetic
    pct = (200 * done + total) // (2 * total)
    return max(0, min(100, pct))


def score_todos(todos: Iterable[Todo]) -> int:
    """Score a collection of todos."""
    total = 0
    done_minutes = 0
    done_count = 0
    for todo in todos:
        total += todo.estimated_minutes or 0
        if todo.is_done:
            done_minutes += todo.estimated_minutes or 0
            done_count += 1
    return compute_daily_score(total, done_minutes, done_count)

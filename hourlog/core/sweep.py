"""
HourLog — Sweep Engine.

Closes past days exactly once. A sweep freezes the day's score and
deterministic summary, moves every unfinished todo into the user's backlog
(remembering the date and hour it came from), deletes those todos, and marks
the day HISTORY, locked and swept.

Everything for one day happens in a single transaction: a failure halfway
leaves the day open with no backlog rows written and no todos deleted.
Sweeping an already swept day is a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from hourlog.core import ordering
from hourlog.core.dates import assert_date_key, is_before, list_date_keys_inclusive
from hourlog.core.scoring import score_todos
from hourlog.core.summary import build_deterministic_summary, summary_input_for_day
from hourlog.errors import Conflict

if TYPE_CHECKING:
    from hourlog.data.db import Database, LogStore

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    did_sweep: bool
    deferred_count: int = 0
    score: int | None = None


_NOT_SWEPT = SweepResult(did_sweep=False)


def _sweep_in(store: LogStore, user_id: int, date: str, now: datetime) -> SweepResult:
    # 1. Load the day with its slots and todos.
    day = store.get_daily_log(user_id, date)

    # 2. Guard: nothing to do for missing or already closed days.
    if day is None or day.is_swept:
        return _NOT_SWEPT

    blocks = store.list_hour_blocks(day.id)
    hour_todos = store.list_day_todos(day.id)

    # 3. Partition.
    pending = [(hour, t) for hour, t in hour_todos if not t.is_done]

    # 4-5. Score and summary.
    score = score_todos(t for _, t in hour_todos)
    summary = build_deterministic_summary(
        summary_input_for_day(day.date, blocks, hour_todos, deferred_count=len(pending))
    )

    # 6. Migrate unfinished work, then close the day.
    for hour, todo in pending:
        store.insert_backlog_item(
            user_id=user_id,
            title=todo.title,
            estimated_minutes=todo.estimated_minutes,
            actual_minutes=todo.actual_minutes,
            source_date=day.date,
            source_hour=hour,
        )
    if pending:
        store.delete_todos(t.id for _, t in pending)
        # Done todos left behind keep a dense order.
        for block_id in sorted({t.hour_block_id for _, t in pending}):
            ordering.resequence_block(store, block_id)

    if not store.close_daily_log(day.id, score, summary, now.isoformat()):
        # Someone closed it between our read and write; roll back and re-read.
        raise Conflict(f"Day {date} for user {user_id} was swept concurrently")

    frozen = day.score if day.score is not None else score
    logger.info(
        "Day swept: user %d %s (score %d, %d deferred to backlog)",
        user_id, date, frozen, len(pending),
    )
    return SweepResult(did_sweep=True, deferred_count=len(pending), score=frozen)


def sweep_day_if_needed(
    db: Database,
    user_id: int,
    date: str,
    now: datetime | None = None,
) -> SweepResult:
    """Sweep one day if it exists and is still open.

    Args:
        db: Database to operate on.
        user_id: Owner of the day.
        date: Date key of the day to close.
        now: Timestamp recorded as swept_at (defaults to the current UTC time).

    Returns:
        SweepResult; did_sweep is False when the day is missing or was
        already swept.
    """
    assert_date_key(date)
    if now is None:
        now = datetime.now(timezone.utc)
    return db.run_idempotent(lambda store: _sweep_in(store, user_id, date, now))


def sweep_all_past_unswept(
    db: Database,
    user_id: int,
    today: str,
    now: datetime | None = None,
) -> int:
    """Sweep every open day of user strictly before today, oldest first.

    Each date is its own transaction; a failing date is logged and skipped.
    Returns how many days were swept.
    """
    assert_date_key(today)
    with db.session() as store:
        candidates = store.list_unswept_dates_before(user_id, today)

    swept = 0
    for date in candidates:
        if not is_before(date, today):
            continue
        try:
            result = sweep_day_if_needed(db, user_id, date, now=now)
        except Exception as exc:
            logger.error("Failed to sweep %s for user %d: %s", date, user_id, exc)
            continue
        if result.did_sweep:
            swept += 1
    return swept


def sweep_range(
    db: Database,
    user_id: int,
    start: str,
    end: str,
    today: str,
    now: datetime | None = None,
) -> int:
    """Sweep every past day in [start, end]. Dates on or after today are left open."""
    assert_date_key(today)
    swept = 0
    for date in list_date_keys_inclusive(start, end):
        if not is_before(date, today):
            break
        if sweep_day_if_needed(db, user_id, date, now=now).did_sweep:
            swept += 1
    return swept

"""
HourLog — Day Materializer.

Guarantees that a (user, date) pair has exactly one DailyLog carrying all
24 HourBlocks. Safe to call any number of times, concurrently included:
the unique keys on (user_id, date) and (daily_log_id, hour) turn repeated
inserts into no-ops, and the whole sequence runs in one transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hourlog.core.dates import assert_date_key
from hourlog.core.lifecycle import classify
from hourlog.data.db import HOURS_PER_DAY
from hourlog.data.models import DailyLog

if TYPE_CHECKING:
    from hourlog.data.db import Database, LogStore

logger = logging.getLogger(__name__)


def backfill_hour_blocks(store: LogStore, daily_log_id: int) -> list[int]:
    """Create any missing hour slots for a day. Never removes slots.

    Returns the hours that were actually created.
    """
    existing = store.list_hours(daily_log_id)
    missing = [h for h in range(HOURS_PER_DAY) if h not in existing]
    if not missing:
        return []
    created = store.insert_hour_blocks(daily_log_id, missing)
    logger.warning(
        "Day #%d was missing %d hour slot(s); backfilled %d", daily_log_id, len(missing), created,
    )
    return missing


def ensure_day_in(store: LogStore, user_id: int, date: str, today: str) -> DailyLog:
    """Materialize a day inside an already open transaction."""
    assert_date_key(date)
    assert_date_key(today)
    status = classify(date, today)

    # 1. Conditional insert of the day, guarded by its unique key.
    created = store.insert_daily_log_if_absent(user_id, date, status)
    day = store.get_daily_log(user_id, date)
    if day is None:
        raise RuntimeError(f"Day {date} for user {user_id} vanished after insert")

    if created:
        # 2. Bulk duplicate-tolerant insert of the 24 slots.
        store.insert_hour_blocks(day.id, range(HOURS_PER_DAY))
        logger.info("Day created: user %d %s (%s)", user_id, date, status.value)
    elif store.set_open_day_status(day.id, status):
        # Existing day: only the status moves, and never away from a sweep.
        day.status = status
        logger.info("Day status updated: user %d %s -> %s", user_id, date, status.value)

    # 3. Read-and-backfill heals slots lost to partial failures or drift.
    backfill_hour_blocks(store, day.id)
    return day


def ensure_day(db: Database, user_id: int, date: str, today: str) -> DailyLog:
    """Ensure the day exists with 24 slots and a current status.

    Raises InvalidDateKey before touching the store.
    """
    assert_date_key(date)
    assert_date_key(today)
    return db.run_idempotent(lambda store: ensure_day_in(store, user_id, date, today))

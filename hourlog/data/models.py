"""
HourLog — Data Models.

A user's day is a DailyLog with 24 HourBlocks. Todos live inside an
HourBlock in a dense sort order; unfinished Todos of a closed day become
BacklogItems that belong to the user rather than to any day.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DailyLogStatus(str, Enum):
    PLANNING = "PLANNING"
    EXECUTION = "EXECUTION"
    HISTORY = "HISTORY"


class TodoStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"


@dataclass
class User:
    """A registered user. Their timezone decides what "today" means."""

    id: int
    display_name: str
    timezone: str = "UTC"
    created_at: str = ""


@dataclass
class DailyLog:
    """One calendar day of one user, unique per (user_id, date).

    Once swept_at is set the day is closed for good: status is HISTORY,
    is_locked is True, and score/summary are frozen.
    """

    id: int
    user_id: int
    date: str                          # YYYY-MM-DD
    status: DailyLogStatus
    is_locked: bool = False
    score: int | None = None           # 0-100, frozen at sweep
    summary: str | None = None
    ai_summary: str | None = None
    swept_at: str | None = None        # ISO timestamp, None while open

    @property
    def is_swept(self) -> bool:
        return self.swept_at is not None


@dataclass
class HourBlock:
    """One of the 24 fixed hour slots of a day."""

    id: int
    daily_log_id: int
    hour: int                          # 0-23
    planned_text: str = ""
    reflection_text: str = ""


@dataclass
class Todo:
    """A work item inside an hour slot.

    sort_order is dense and zero-based within the owning HourBlock.
    """

    id: int
    daily_log_id: int
    hour_block_id: int
    title: str
    estimated_minutes: int = 0
    actual_minutes: int | None = None
    status: TodoStatus = TodoStatus.PENDING
    sort_order: int = 0
    created_at: str = ""

    @property
    def is_done(self) -> bool:
        return self.status == TodoStatus.DONE


@dataclass
class BacklogItem:
    """Unfinished work detached from any day, with optional provenance."""

    id: int
    user_id: int
    title: str
    estimated_minutes: int = 0
    actual_minutes: int | None = None
    source_date: str | None = None
    source_hour: int | None = None
    created_at: str = ""


@dataclass
class BlockView:
    """An hour slot as returned to readers, with its todos and counters."""

    block: HourBlock
    todos: list[Todo] = field(default_factory=list)
    estimated_total: int = 0
    done_estimated: int = 0
    done_count: int = 0
    total_count: int = 0


@dataclass
class DayView:
    """A fully materialized day as returned to readers."""

    daily_log: DailyLog
    today: str
    timezone: str
    score_preview: int
    blocks: list[BlockView] = field(default_factory=list)


@dataclass
class BacklogPage:
    items: list[BacklogItem]
    page: int
    page_size: int
    total_count: int
    total_pages: int

"""
HourLog — UI-Agnostic Day Service.

Service layer that applies the lifecycle rules to every user action:
open and read days, edit slot text, compose, toggle, move and delete todos,
restore backlog items, and (re)generate summaries.

Every operation receives the caller's instant explicitly and derives
"today" from the user's stored timezone; nothing here reads a global clock
to decide what day it is. Mutations run in one transaction each, so they
either fully apply or raise a single HourLogError.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ValidationError, field_validator

from hourlog.config import settings
from hourlog.core import ordering
from hourlog.core.dates import assert_date_key, is_before, resolve_timezone, today_in_timezone
from hourlog.core.lifecycle import reconcile_status
from hourlog.core.materializer import backfill_hour_blocks, ensure_day, ensure_day_in
from hourlog.core.scoring import compute_daily_score
from hourlog.core.summary import build_deterministic_summary, summary_input_for_day
from hourlog.core.sweep import sweep_all_past_unswept
from hourlog.data.models import (
    BacklogPage,
    BlockView,
    DailyLog,
    DayView,
    HourBlock,
    Todo,
    TodoStatus,
    User,
)
from hourlog.errors import Forbidden, InvalidInput, NotFound
from hourlog.ports.enrichment_port import RewriteResult

if TYPE_CHECKING:
    from hourlog.data.db import Database, LogStore
    from hourlog.ports.enrichment_port import SummaryRewriter

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


# ---------------------------------------------------------------------------
# Input shapes
# ---------------------------------------------------------------------------


class TodoDraft(BaseModel):
    title: str
    estimated_minutes: int = 0

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        if len(v) > settings.TITLE_MAX_LENGTH:
            raise ValueError(f"title must be at most {settings.TITLE_MAX_LENGTH} characters")
        return v

    @field_validator("estimated_minutes")
    @classmethod
    def check_minutes(cls, v: int) -> int:
        return _check_minutes(v)


class MinutesInput(BaseModel):
    minutes: int | None

    @field_validator("minutes")
    @classmethod
    def check_minutes(cls, v: int | None) -> int | None:
        return None if v is None else _check_minutes(v)


class SlotText(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def check_text(cls, v: str) -> str:
        if len(v) > settings.TEXT_MAX_LENGTH:
            raise ValueError(f"text must be at most {settings.TEXT_MAX_LENGTH} characters")
        return v


class Placement(BaseModel):
    index: int | None = None

    @field_validator("index")
    @classmethod
    def check_index(cls, v: int | None) -> int | None:
        if v is not None and not 0 <= v <= settings.MAX_TARGET_INDEX:
            raise ValueError(f"index must be between 0 and {settings.MAX_TARGET_INDEX}")
        return v


class HourInput(BaseModel):
    hour: int

    @field_validator("hour")
    @classmethod
    def check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("hour must be between 0 and 23")
        return v


class PageRequest(BaseModel):
    page: int = 1
    page_size: int = 20

    @field_validator("page")
    @classmethod
    def check_page(cls, v: int) -> int:
        if not 1 <= v <= 10_000:
            raise ValueError("page must be between 1 and 10000")
        return v

    @field_validator("page_size")
    @classmethod
    def check_page_size(cls, v: int) -> int:
        if not 1 <= v <= settings.BACKLOG_MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {settings.BACKLOG_MAX_PAGE_SIZE}")
        return v


def _check_minutes(v: int) -> int:
    if not 0 <= v <= settings.MAX_ESTIMATE_MINUTES:
        raise ValueError(f"minutes must be between 0 and {settings.MAX_ESTIMATE_MINUTES}")
    return v


def _todo_status(value: TodoStatus | str) -> TodoStatus:
    try:
        return TodoStatus(value)
    except ValueError as exc:
        raise InvalidInput(f"Unknown todo status: {value!r}") from exc


def _validated(model: type[_M], **values: object) -> _M:
    try:
        return model(**values)
    except ValidationError as exc:
        raise InvalidInput(str(exc)) from exc


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class SummaryResult:
    summary: str
    ai_summary: str | None
    ai_error: str | None = None


# ---------------------------------------------------------------------------
# Lifecycle gates
# ---------------------------------------------------------------------------


def _ensure_editable(day: DailyLog, today: str) -> None:
    if is_before(day.date, today):
        raise Forbidden("Past days are read-only.")
    if day.is_locked:
        raise Forbidden("This day is locked.")


def _ensure_today(day: DailyLog, today: str, message: str) -> None:
    if day.date != today:
        raise Forbidden(message)


def _aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


class DayService:
    """Applies HourLog's lifecycle rules on top of the store.

    Raises HourLogError subclasses; never returns partial results.
    """

    def __init__(self, db: Database, rewriter: SummaryRewriter | None = None) -> None:
        self._db = db
        self._rewriter = rewriter

    # ------------------------------------------------------------------
    # Lookups shared by every operation
    # ------------------------------------------------------------------

    @staticmethod
    def _user(store: LogStore, user_id: int) -> User:
        user = store.get_user(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def _today(self, store: LogStore, user_id: int, instant: datetime) -> str:
        return today_in_timezone(self._user(store, user_id).timezone, instant)

    @staticmethod
    def _owned_day(store: LogStore, user_id: int, date: str) -> DailyLog:
        day = store.get_daily_log(user_id, date)
        if day is None:
            raise NotFound(f"No day {date} for user {user_id}")
        return day

    @staticmethod
    def _owned_block(store: LogStore, user_id: int, block_id: int) -> tuple[HourBlock, DailyLog]:
        block = store.get_hour_block(block_id)
        day = store.get_daily_log_by_id(block.daily_log_id) if block else None
        if block is None or day is None or day.user_id != user_id:
            raise NotFound(f"Hour block {block_id} not found")
        return block, day

    @staticmethod
    def _owned_todo(store: LogStore, user_id: int, todo_id: int) -> tuple[Todo, DailyLog]:
        todo = store.get_todo(todo_id)
        day = store.get_daily_log_by_id(todo.daily_log_id) if todo else None
        if todo is None or day is None or day.user_id != user_id:
            raise NotFound(f"Todo {todo_id} not found")
        return todo, day

    def today_for(self, user_id: int, instant: datetime) -> str:
        """The user's current calendar date at instant."""
        with self._db.session() as store:
            return self._today(store, user_id, instant)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def register_user(self, display_name: str, timezone_name: str | None = None) -> User:
        timezone_name = timezone_name or settings.DEFAULT_TIMEZONE
        resolve_timezone(timezone_name)
        with self._db.transaction() as store:
            user = store.add_user(display_name, timezone_name)
        logger.info("User registered: #%d '%s' (%s)", user.id, display_name, timezone_name)
        return user

    def set_timezone(self, user_id: int, timezone_name: str) -> None:
        resolve_timezone(timezone_name)
        with self._db.transaction() as store:
            if not store.set_user_timezone(user_id, timezone_name):
                raise NotFound(f"User {user_id} not found")
        logger.info("User #%d timezone set to %s", user_id, timezone_name)

    # ------------------------------------------------------------------
    # Days
    # ------------------------------------------------------------------

    def open_day(self, user_id: int, date: str, instant: datetime) -> DailyLog:
        """Materialize a day. Opening today also closes every stale past day."""
        assert_date_key(date)
        today = self.today_for(user_id, instant)
        day = ensure_day(self._db, user_id, date, today)

        if date == today:
            swept = sweep_all_past_unswept(self._db, user_id, today, now=_aware(instant))
            if swept:
                logger.info("Opening %s swept %d past day(s) for user %d", today, swept, user_id)
        return day

    def get_day(self, user_id: int, date: str, instant: datetime) -> DayView:
        """Read a day with its slots, todos, counters and live score preview.

        Missing slots are backfilled and a stale status is corrected before
        the view is built. Raises NotFound if the day was never opened.
        """
        assert_date_key(date)
        with self._db.transaction() as store:
            user = self._user(store, user_id)
            today = today_in_timezone(user.timezone, instant)
            day = self._owned_day(store, user_id, date)

            backfill_hour_blocks(store, day.id)

            status = reconcile_status(day, today)
            if status != day.status and store.set_open_day_status(day.id, status):
                day.status = status

            blocks = store.list_hour_blocks(day.id)
            hour_todos = store.list_day_todos(day.id)

        by_block: dict[int, list[Todo]] = {}
        for _, todo in hour_todos:
            by_block.setdefault(todo.hour_block_id, []).append(todo)

        views = []
        for block in blocks:
            todos = by_block.get(block.id, [])
            done = [t for t in todos if t.is_done]
            views.append(BlockView(
                block=block,
                todos=todos,
                estimated_total=sum(t.estimated_minutes for t in todos),
                done_estimated=sum(t.estimated_minutes for t in done),
                done_count=len(done),
                total_count=len(todos),
            ))

        preview = compute_daily_score(
            sum(v.estimated_total for v in views),
            sum(v.done_estimated for v in views),
            sum(v.done_count for v in views),
        )
        return DayView(
            daily_log=day,
            today=today,
            timezone=user.timezone,
            score_preview=preview,
            blocks=views,
        )

    def lock_day(self, user_id: int, date: str) -> None:
        assert_date_key(date)
        with self._db.transaction() as store:
            day = self._owned_day(store, user_id, date)
            store.set_locked(day.id, True)
        logger.info("Day locked: user %d %s", user_id, date)

    def unlock_day(self, user_id: int, date: str) -> None:
        assert_date_key(date)
        with self._db.transaction() as store:
            day = self._owned_day(store, user_id, date)
            if day.is_swept:
                raise Forbidden("Swept days stay locked.")
            store.set_locked(day.id, False)
        logger.info("Day unlocked: user %d %s", user_id, date)

    # ------------------------------------------------------------------
    # Slot text
    # ------------------------------------------------------------------

    def update_plan(self, user_id: int, block_id: int, text: str, instant: datetime) -> None:
        payload = _validated(SlotText, text=text)
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            block, day = self._owned_block(store, user_id, block_id)
            _ensure_editable(day, today)
            store.set_planned_text(block.id, payload.text)

    def update_reflection(self, user_id: int, block_id: int, text: str, instant: datetime) -> None:
        payload = _validated(SlotText, text=text)
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            block, day = self._owned_block(store, user_id, block_id)
            _ensure_today(day, today, "Reflections can only be edited for today.")
            store.set_reflection_text(block.id, payload.text)

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    def create_todo(
        self,
        user_id: int,
        block_id: int,
        title: str,
        estimated_minutes: int,
        instant: datetime,
        index: int | None = None,
    ) -> Todo:
        """Add a pending todo to a slot, appended unless index is given."""
        draft = _validated(TodoDraft, title=title, estimated_minutes=estimated_minutes)
        placement = _validated(Placement, index=index)
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            block, day = self._owned_block(store, user_id, block_id)
            _ensure_editable(day, today)
            todo = ordering.create_in_block(
                store, block, draft.title, draft.estimated_minutes, index=placement.index,
            )
        logger.info("Todo #%d created in block #%d at %d", todo.id, block_id, todo.sort_order)
        return todo

    def set_todo_status(
        self, user_id: int, todo_id: int, status: TodoStatus, instant: datetime,
    ) -> None:
        status = _todo_status(status)
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            todo, day = self._owned_todo(store, user_id, todo_id)
            _ensure_today(day, today, "Only today's todos can be marked complete/incomplete.")
            store.set_todo_status(todo.id, status)

    def set_block_status(
        self, user_id: int, block_id: int, status: TodoStatus, instant: datetime,
    ) -> int:
        """Set every todo of a slot to status. Returns how many were updated."""
        status = _todo_status(status)
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            block, day = self._owned_block(store, user_id, block_id)
            _ensure_today(day, today, "Only today's todos can be bulk-updated.")
            return store.set_block_todo_status(block.id, status)

    def update_estimate(self, user_id: int, todo_id: int, minutes: int, instant: datetime) -> None:
        payload = _validated(MinutesInput, minutes=minutes)
        if payload.minutes is None:
            raise InvalidInput("Estimate is required.")
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            todo, day = self._owned_todo(store, user_id, todo_id)
            _ensure_editable(day, today)
            store.set_todo_estimate(todo.id, payload.minutes)

    def update_actual_minutes(
        self, user_id: int, todo_id: int, minutes: int | None, instant: datetime,
    ) -> None:
        payload = _validated(MinutesInput, minutes=minutes)
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            todo, day = self._owned_todo(store, user_id, todo_id)
            _ensure_editable(day, today)
            store.set_todo_actual(todo.id, payload.minutes)

    def delete_todo(self, user_id: int, todo_id: int, instant: datetime) -> None:
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            todo, day = self._owned_todo(store, user_id, todo_id)
            _ensure_editable(day, today)
            ordering.delete_and_resequence(store, todo)
        logger.info("Todo #%d deleted", todo_id)

    def move_todo(
        self,
        user_id: int,
        todo_id: int,
        target_block_id: int,
        instant: datetime,
        target_index: int | None = None,
    ) -> Todo:
        """Move a todo to another slot of the same day (or within its slot)."""
        placement = _validated(Placement, index=target_index)
        with self._db.transaction() as store:
            today = self._today(store, user_id, instant)
            todo, day = self._owned_todo(store, user_id, todo_id)
            target_block, target_day = self._owned_block(store, user_id, target_block_id)
            if target_day.id != day.id:
                raise Forbidden("Todos can only be moved within the same day.")
            _ensure_editable(day, today)
            ordering.move_across_blocks(store, todo, target_block, placement.index)
        return todo

    # ------------------------------------------------------------------
    # Backlog
    # ------------------------------------------------------------------

    def list_backlog(
        self, user_id: int, page: int = 1, page_size: int | None = None,
    ) -> BacklogPage:
        """One page of the user's backlog, newest first."""
        if page_size is None:
            page_size = settings.BACKLOG_PAGE_SIZE
        req = _validated(PageRequest, page=page, page_size=page_size)
        with self._db.session() as store:
            total = store.count_backlog(user_id)
            items = store.list_backlog(
                user_id, limit=req.page_size, offset=(req.page - 1) * req.page_size,
            )
        return BacklogPage(
            items=items,
            page=req.page,
            page_size=req.page_size,
            total_count=total,
            total_pages=max(1, math.ceil(total / req.page_size)),
        )

    def restore_backlog_item(
        self,
        user_id: int,
        item_id: int,
        target_date: str,
        target_hour: int,
        instant: datetime,
    ) -> Todo:
        """Turn a backlog item back into a pending todo appended to a slot.

        The target day is materialized if needed. Past targets are Forbidden.
        """
        assert_date_key(target_date)
        hour = _validated(HourInput, hour=target_hour).hour

        def restore(store: LogStore) -> Todo:
            today = self._today(store, user_id, instant)
            if is_before(target_date, today):
                raise Forbidden("Cannot restore into past days.")

            item = store.get_backlog_item(item_id)
            if item is None or item.user_id != user_id:
                raise NotFound(f"Backlog item {item_id} not found")

            day = ensure_day_in(store, user_id, target_date, today)
            if day.is_locked:
                raise Forbidden("This day is locked.")
            block = store.get_hour_block_by_hour(day.id, hour)
            if block is None:
                raise RuntimeError(f"Hour {hour} missing on day #{day.id} after backfill")

            todo = ordering.create_in_block(
                store, block, item.title, item.estimated_minutes, item.actual_minutes,
            )
            store.delete_backlog_item(item.id)
            return todo

        # May materialize the target day: retried on Conflict like ensure_day.
        todo = self._db.run_idempotent(restore)

        logger.info(
            "Backlog item #%d restored as todo #%d (%s %02d:00)",
            item_id, todo.id, target_date, hour,
        )
        return todo

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    async def generate_summary(self, user_id: int, date: str) -> SummaryResult:
        """Build and persist the deterministic summary, then try to enrich it.

        Open days get a fresh summary; swept days keep the one frozen at sweep
        time. Enrichment failure leaves ai_summary untouched and is reported
        in ai_error.
        """
        assert_date_key(date)
        with self._db.session() as store:
            day = self._owned_day(store, user_id, date)
            if day.is_swept and day.summary is not None:
                summary = day.summary
            else:
                summary = build_deterministic_summary(summary_input_for_day(
                    day.date, store.list_hour_blocks(day.id), store.list_day_todos(day.id),
                ))

        if self._rewriter is None:
            rewrite = RewriteResult(ok=False, error="Summary enrichment is not configured.")
        else:
            rewrite = await self._rewriter.rewrite(day.date, summary)

        with self._db.transaction() as store:
            # The day may have been swept while the rewrite was in flight.
            current = store.get_daily_log_by_id(day.id)
            if current is None:
                raise NotFound(f"No day {date} for user {user_id}")
            if current.is_swept and current.summary is not None:
                if summary != current.summary:
                    logger.info(
                        "Day %s was swept during summary generation; keeping frozen summary",
                        date,
                    )
                summary = current.summary
            elif summary != current.summary:
                store.set_summary(current.id, summary)
            if rewrite.ok:
                store.set_ai_summary(current.id, rewrite.text)

        if not rewrite.ok:
            logger.warning("AI summary for %s left unchanged: %s", date, rewrite.error)
            return SummaryResult(
                summary=summary, ai_summary=current.ai_summary, ai_error=rewrite.error,
            )
        return SummaryResult(summary=summary, ai_summary=rewrite.text)

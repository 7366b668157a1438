"""Tests for hourlog.core.day_service — lifecycle rules on every user action.

Runs against a real temp SQLite database; the summary rewriter is mocked.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from hourlog.core.day_service import DayService
from hourlog.core.materializer import ensure_day_in
from hourlog.core.sweep import sweep_all_past_unswept
from hourlog.data.models import DailyLogStatus, TodoStatus
from hourlog.errors import (
    Conflict,
    Forbidden,
    InvalidDateKey,
    InvalidInput,
    NotFound,
    UnknownTimeZone,
)
from hourlog.ports.enrichment_port import RewriteResult

# 15:00 UTC on Tuesday 2026-03-10
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
TODAY = "2026-03-10"
YESTERDAY = "2026-03-09"
TOMORROW = "2026-03-11"
NOW_YESTERDAY = NOW - timedelta(days=1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _block_id(service, user, date, hour, instant=NOW):
    return service.get_day(user.id, date, instant).blocks[hour].block.id


def _titles(service, user, date, hour, instant=NOW):
    return [t.title for t in service.get_day(user.id, date, instant).blocks[hour].todos]


def _orders(service, user, date, hour, instant=NOW):
    return [t.sort_order for t in service.get_day(user.id, date, instant).blocks[hour].todos]


def _yesterday_with_work(service, user):
    """Open yesterday while it was today, add one done and one pending todo."""
    service.open_day(user.id, YESTERDAY, NOW_YESTERDAY)
    block = _block_id(service, user, YESTERDAY, 9, NOW_YESTERDAY)
    done = service.create_todo(user.id, block, "Write report", 10, NOW_YESTERDAY)
    service.create_todo(user.id, block, "Email Dana", 20, NOW_YESTERDAY)
    service.set_todo_status(user.id, done.id, TodoStatus.DONE, NOW_YESTERDAY)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUsers:
    def test_register_defaults_timezone(self, service):
        user = service.register_user("Dana")
        assert user.timezone == "UTC"

    def test_register_unknown_timezone(self, service):
        with pytest.raises(UnknownTimeZone):
            service.register_user("Dana", "Mars/Olympus")

    def test_today_follows_user_timezone(self, service, user):
        assert service.today_for(user.id, NOW) == TODAY
        service.set_timezone(user.id, "Pacific/Auckland")
        assert service.today_for(user.id, NOW) == TOMORROW

    def test_set_timezone_missing_user(self, service):
        with pytest.raises(NotFound):
            service.set_timezone(999, "UTC")

    def test_unknown_user(self, service):
        with pytest.raises(NotFound):
            service.open_day(999, TODAY, NOW)


# ---------------------------------------------------------------------------
# Days
# ---------------------------------------------------------------------------


class TestOpenAndGetDay:
    def test_open_today(self, service, user):
        day = service.open_day(user.id, TODAY, NOW)
        assert day.status == DailyLogStatus.EXECUTION

        view = service.get_day(user.id, TODAY, NOW)
        assert view.today == TODAY
        assert view.timezone == "UTC"
        assert [b.block.hour for b in view.blocks] == list(range(24))
        assert view.score_preview == 0

    def test_open_future_is_planning(self, service, user):
        assert service.open_day(user.id, TOMORROW, NOW).status == DailyLogStatus.PLANNING

    def test_invalid_date(self, service, user):
        with pytest.raises(InvalidDateKey):
            service.open_day(user.id, "2026/03/10", NOW)

    def test_get_missing_day(self, service, user):
        with pytest.raises(NotFound):
            service.get_day(user.id, TODAY, NOW)

    def test_get_reconciles_stale_status(self, service, user):
        service.open_day(user.id, TOMORROW, NOW)
        view = service.get_day(user.id, TOMORROW, NOW + timedelta(days=1))
        assert view.daily_log.status == DailyLogStatus.EXECUTION

    def test_get_backfills_missing_blocks(self, db, service, user):
        day = service.open_day(user.id, TODAY, NOW)
        with db.session() as store:
            store._conn.execute("DELETE FROM hour_blocks WHERE daily_log_id = ? AND hour = 4", (day.id,))
        assert len(service.get_day(user.id, TODAY, NOW).blocks) == 24

    def test_counters_and_preview(self, service, user):
        service.open_day(user.id, TODAY, NOW)
        block = _block_id(service, user, TODAY, 9)
        a = service.create_todo(user.id, block, "a", 10, NOW)
        service.create_todo(user.id, block, "b", 20, NOW)
        service.set_todo_status(user.id, a.id, TodoStatus.DONE, NOW)

        view = service.get_day(user.id, TODAY, NOW)
        nine = view.blocks[9]
        assert (nine.estimated_total, nine.done_estimated) == (30, 10)
        assert (nine.done_count, nine.total_count) == (1, 2)
        assert view.score_preview == 33

    def test_opening_today_sweeps_past_days(self, service, user):
        _yesterday_with_work(service, user)

        service.open_day(user.id, TODAY, NOW)

        past = service.get_day(user.id, YESTERDAY, NOW).daily_log
        assert past.status == DailyLogStatus.HISTORY
        assert past.is_locked is True
        assert past.score == 33
        assert past.swept_at == NOW.isoformat()
        page = service.list_backlog(user.id)
        assert [(i.title, i.source_date, i.source_hour) for i in page.items] == [
            ("Email Dana", YESTERDAY, 9),
        ]

    def test_opening_future_day_does_not_sweep(self, service, user):
        _yesterday_with_work(service, user)
        service.open_day(user.id, TOMORROW, NOW)
        assert service.get_day(user.id, YESTERDAY, NOW).daily_log.swept_at is None


class TestLocking:
    def test_lock_blocks_edits(self, service, user):
        service.open_day(user.id, TOMORROW, NOW)
        service.lock_day(user.id, TOMORROW)
        block = _block_id(service, user, TOMORROW, 8)
        with pytest.raises(Forbidden, match="locked"):
            service.update_plan(user.id, block, "Gym", NOW)

        service.unlock_day(user.id, TOMORROW)
        service.update_plan(user.id, block, "Gym", NOW)
        assert service.get_day(user.id, TOMORROW, NOW).blocks[8].block.planned_text == "Gym"

    def test_swept_day_cannot_be_unlocked(self, service, user):
        _yesterday_with_work(service, user)
        service.open_day(user.id, TODAY, NOW)
        with pytest.raises(Forbidden):
            service.unlock_day(user.id, YESTERDAY)


# ---------------------------------------------------------------------------
# Slot text
# ---------------------------------------------------------------------------


class TestSlotText:
    def test_plan_on_past_day_forbidden(self, service, user):
        service.open_day(user.id, YESTERDAY, NOW)
        block = _block_id(service, user, YESTERDAY, 8)
        with pytest.raises(Forbidden, match="Past days are read-only."):
            service.update_plan(user.id, block, "too late", NOW)

    def test_reflection_only_today(self, service, user):
        service.open_day(user.id, TOMORROW, NOW)
        future = _block_id(service, user, TOMORROW, 8)
        with pytest.raises(Forbidden):
            service.update_reflection(user.id, future, "premature", NOW)

        service.open_day(user.id, TODAY, NOW)
        block = _block_id(service, user, TODAY, 8)
        service.update_reflection(user.id, block, "Went well", NOW)
        assert service.get_day(user.id, TODAY, NOW).blocks[8].block.reflection_text == "Went well"

    def test_text_too_long(self, service, user):
        service.open_day(user.id, TODAY, NOW)
        block = _block_id(service, user, TODAY, 8)
        with pytest.raises(InvalidInput):
            service.update_plan(user.id, block, "x" * 5001, NOW)

    def test_foreign_block_is_not_found(self, service, user):
        other = service.register_user("Dana", "UTC")
        service.open_day(other.id, TODAY, NOW)
        block = _block_id(service, other, TODAY, 8)
        with pytest.raises(NotFound):
            service.update_plan(user.id, block, "mine now", NOW)


# ---------------------------------------------------------------------------
# Todos
# ---------------------------------------------------------------------------


class TestTodos:
    @pytest.fixture
    def block(self, service, user):
        service.open_day(user.id, TODAY, NOW)
        return _block_id(service, user, TODAY, 9)

    def test_create_appends_and_inserts(self, service, user, block):
        service.create_todo(user.id, block, "a", 10, NOW)
        service.create_todo(user.id, block, "b", 10, NOW)
        service.create_todo(user.id, block, "front", 10, NOW, index=0)
        assert _titles(service, user, TODAY, 9) == ["front", "a", "b"]
        assert _orders(service, user, TODAY, 9) == [0, 1, 2]

    def test_title_trimmed(self, service, user, block):
        todo = service.create_todo(user.id, block, "  spaced  ", 5, NOW)
        assert todo.title == "spaced"

    @pytest.mark.parametrize("title, minutes, index", [
        ("", 10, None),
        ("   ", 10, None),
        ("x" * 201, 10, None),
        ("ok", -1, None),
        ("ok", 1441, None),
        ("ok", 10, -1),
        ("ok", 10, 1001),
    ])
    def test_create_rejects_bad_input(self, service, user, block, title, minutes, index):
        with pytest.raises(InvalidInput):
            service.create_todo(user.id, block, title, minutes, NOW, index=index)

    def test_status_only_today(self, service, user):
        service.open_day(user.id, TOMORROW, NOW)
        block = _block_id(service, user, TOMORROW, 9)
        todo = service.create_todo(user.id, block, "later", 10, NOW)
        with pytest.raises(Forbidden, match="Only today's todos"):
            service.set_todo_status(user.id, todo.id, TodoStatus.DONE, NOW)

    def test_status_accepts_string(self, service, user, block):
        todo = service.create_todo(user.id, block, "a", 10, NOW)
        service.set_todo_status(user.id, todo.id, "DONE", NOW)
        assert service.get_day(user.id, TODAY, NOW).blocks[9].todos[0].is_done

    def test_unknown_status(self, service, user, block):
        todo = service.create_todo(user.id, block, "a", 10, NOW)
        with pytest.raises(InvalidInput):
            service.set_todo_status(user.id, todo.id, "MAYBE", NOW)

    def test_block_status(self, service, user, block):
        for title in "abc":
            service.create_todo(user.id, block, title, 10, NOW)
        assert service.set_block_status(user.id, block, TodoStatus.DONE, NOW) == 3
        assert service.get_day(user.id, TODAY, NOW).score_preview == 100

    def test_estimate_and_actual(self, service, user, block):
        todo = service.create_todo(user.id, block, "a", 10, NOW)
        service.update_estimate(user.id, todo.id, 45, NOW)
        service.update_actual_minutes(user.id, todo.id, 50, NOW)
        stored = service.get_day(user.id, TODAY, NOW).blocks[9].todos[0]
        assert (stored.estimated_minutes, stored.actual_minutes) == (45, 50)

        service.update_actual_minutes(user.id, todo.id, None, NOW)
        assert service.get_day(user.id, TODAY, NOW).blocks[9].todos[0].actual_minutes is None

    def test_delete_resequences(self, service, user, block):
        todos = [service.create_todo(user.id, block, t, 10, NOW) for t in "abc"]
        service.delete_todo(user.id, todos[0].id, NOW)
        assert _titles(service, user, TODAY, 9) == ["b", "c"]
        assert _orders(service, user, TODAY, 9) == [0, 1]

    def test_missing_todo(self, service, user, block):
        with pytest.raises(NotFound):
            service.delete_todo(user.id, 12345, NOW)

    def test_foreign_todo_is_not_found(self, service, user, block):
        todo = service.create_todo(user.id, block, "private", 10, NOW)
        other = service.register_user("Dana", "UTC")
        with pytest.raises(NotFound):
            service.set_todo_status(other.id, todo.id, TodoStatus.DONE, NOW)


class TestMoveTodo:
    def test_move_between_hours(self, service, user):
        service.open_day(user.id, TODAY, NOW)
        nine = _block_id(service, user, TODAY, 9)
        ten = _block_id(service, user, TODAY, 10)
        a, b = (service.create_todo(user.id, nine, t, 10, NOW) for t in "ab")
        service.create_todo(user.id, ten, "x", 10, NOW)

        moved = service.move_todo(user.id, a.id, ten, NOW, target_index=0)

        assert moved.hour_block_id == ten
        assert _titles(service, user, TODAY, 9) == ["b"]
        assert _orders(service, user, TODAY, 9) == [0]
        assert _titles(service, user, TODAY, 10) == ["a", "x"]
        assert _orders(service, user, TODAY, 10) == [0, 1]

    def test_cross_day_move_forbidden(self, service, user):
        service.open_day(user.id, TODAY, NOW)
        service.open_day(user.id, TOMORROW, NOW)
        today_block = _block_id(service, user, TODAY, 9)
        tomorrow_block = _block_id(service, user, TOMORROW, 9)
        a, b = (service.create_todo(user.id, today_block, t, 10, NOW) for t in "ab")

        with pytest.raises(Forbidden, match="same day"):
            service.move_todo(user.id, a.id, tomorrow_block, NOW, target_index=0)

        assert _titles(service, user, TODAY, 9) == ["a", "b"]
        assert _orders(service, user, TODAY, 9) == [0, 1]
        assert _titles(service, user, TOMORROW, 9) == []

    def test_move_on_locked_day_forbidden(self, service, user):
        service.open_day(user.id, TODAY, NOW)
        nine = _block_id(service, user, TODAY, 9)
        ten = _block_id(service, user, TODAY, 10)
        a = service.create_todo(user.id, nine, "a", 10, NOW)
        service.lock_day(user.id, TODAY)
        with pytest.raises(Forbidden):
            service.move_todo(user.id, a.id, ten, NOW)


# ---------------------------------------------------------------------------
# Backlog
# ---------------------------------------------------------------------------


class TestBacklog:
    def _swept_backlog(self, service, user):
        _yesterday_with_work(service, user)
        service.open_day(user.id, TODAY, NOW)
        return service.list_backlog(user.id).items[0]

    def test_restore_appends_to_target_slot(self, service, user):
        item = self._swept_backlog(service, user)
        block = _block_id(service, user, TODAY, 14)
        service.create_todo(user.id, block, "existing", 5, NOW)

        todo = service.restore_backlog_item(user.id, item.id, TODAY, 14, NOW)

        assert todo.title == "Email Dana"
        assert todo.estimated_minutes == 20
        assert todo.status == TodoStatus.PENDING
        assert _titles(service, user, TODAY, 14) == ["existing", "Email Dana"]
        assert _orders(service, user, TODAY, 14) == [0, 1]
        assert service.list_backlog(user.id).total_count == 0

    def test_restore_materializes_future_day(self, service, user):
        item = self._swept_backlog(service, user)
        service.restore_backlog_item(user.id, item.id, "2026-03-20", 7, NOW)
        view = service.get_day(user.id, "2026-03-20", NOW)
        assert view.daily_log.status == DailyLogStatus.PLANNING
        assert [t.title for t in view.blocks[7].todos] == ["Email Dana"]

    def test_restore_into_past_forbidden(self, service, user):
        item = self._swept_backlog(service, user)
        with pytest.raises(Forbidden, match="Cannot restore into past days."):
            service.restore_backlog_item(user.id, item.id, YESTERDAY, 9, NOW)
        assert service.list_backlog(user.id).total_count == 1

    def test_restore_into_locked_day_forbidden(self, service, user):
        item = self._swept_backlog(service, user)
        service.open_day(user.id, TOMORROW, NOW)
        service.lock_day(user.id, TOMORROW)
        with pytest.raises(Forbidden):
            service.restore_backlog_item(user.id, item.id, TOMORROW, 9, NOW)
        assert service.list_backlog(user.id).total_count == 1

    def test_restore_bad_hour(self, service, user):
        item = self._swept_backlog(service, user)
        with pytest.raises(InvalidInput):
            service.restore_backlog_item(user.id, item.id, TODAY, 24, NOW)

    def test_restore_foreign_item(self, service, user):
        item = self._swept_backlog(service, user)
        other = service.register_user("Dana", "UTC")
        with pytest.raises(NotFound):
            service.restore_backlog_item(other.id, item.id, TODAY, 9, NOW)

    def test_restore_retries_after_conflict(self, service, user):
        item = self._swept_backlog(service, user)
        attempts = []

        def lose_first_race(store, *args):
            attempts.append(args)
            if len(attempts) == 1:
                raise Conflict("day materialized concurrently")
            return ensure_day_in(store, *args)

        with patch("hourlog.core.day_service.ensure_day_in", side_effect=lose_first_race):
            todo = service.restore_backlog_item(user.id, item.id, "2026-03-20", 9, NOW)

        assert len(attempts) == 2
        assert todo.title == "Email Dana"
        assert _titles(service, user, "2026-03-20", 9) == ["Email Dana"]
        assert service.list_backlog(user.id).total_count == 0

    def test_restore_gives_up_after_repeated_conflicts(self, service, user):
        item = self._swept_backlog(service, user)
        with patch("hourlog.core.day_service.ensure_day_in", side_effect=Conflict("busy")):
            with pytest.raises(Conflict):
                service.restore_backlog_item(user.id, item.id, "2026-03-20", 9, NOW)
        assert service.list_backlog(user.id).total_count == 1

    def test_paging(self, db, service, user):
        with db.transaction() as store:
            for i in range(25):
                store.insert_backlog_item(user.id, f"item {i}", 5, None)

        first = service.list_backlog(user.id, page=1, page_size=10)
        last = service.list_backlog(user.id, page=3, page_size=10)
        assert first.total_count == 25
        assert first.total_pages == 3
        assert first.items[0].title == "item 24"
        assert len(last.items) == 5

    def test_empty_backlog_has_one_page(self, service, user):
        page = service.list_backlog(user.id)
        assert page.items == []
        assert page.total_pages == 1
        assert page.page_size == 20

    @pytest.mark.parametrize("page, size", [(0, 10), (1, 0), (1, 101)])
    def test_bad_paging(self, service, user, page, size):
        with pytest.raises(InvalidInput):
            service.list_backlog(user.id, page=page, page_size=size)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


def _rewriter(result):
    rewriter = AsyncMock()
    rewriter.rewrite = AsyncMock(return_value=result)
    return rewriter


class TestGenerateSummary:
    @pytest.mark.asyncio
    async def test_success_stores_both(self, db, user):
        service = DayService(db, rewriter=_rewriter(RewriteResult(ok=True, text="Nice day.")))
        service.open_day(user.id, TODAY, NOW)

        result = await service.generate_summary(user.id, TODAY)

        assert result.summary.startswith(f"Daily Summary ({TODAY})")
        assert result.ai_summary == "Nice day."
        assert result.ai_error is None
        stored = service.get_day(user.id, TODAY, NOW).daily_log
        assert stored.summary == result.summary
        assert stored.ai_summary == "Nice day."

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_ai_summary(self, db, user):
        good = DayService(db, rewriter=_rewriter(RewriteResult(ok=True, text="First.")))
        good.open_day(user.id, TODAY, NOW)
        await good.generate_summary(user.id, TODAY)

        failing = DayService(db, rewriter=_rewriter(RewriteResult(ok=False, error="timed out")))
        result = await failing.generate_summary(user.id, TODAY)

        assert result.ai_summary == "First."
        assert result.ai_error == "timed out"
        assert failing.get_day(user.id, TODAY, NOW).daily_log.ai_summary == "First."

    @pytest.mark.asyncio
    async def test_without_rewriter(self, service, user):
        service.open_day(user.id, TODAY, NOW)
        result = await service.generate_summary(user.id, TODAY)
        assert result.ai_summary is None
        assert result.ai_error == "Summary enrichment is not configured."
        assert service.get_day(user.id, TODAY, NOW).daily_log.summary == result.summary

    @pytest.mark.asyncio
    async def test_swept_day_keeps_frozen_summary(self, db, user):
        rewriter = _rewriter(RewriteResult(ok=True, text="Rewritten."))
        service = DayService(db, rewriter=rewriter)
        _yesterday_with_work(service, user)
        service.open_day(user.id, TODAY, NOW)
        frozen = service.get_day(user.id, YESTERDAY, NOW).daily_log.summary

        result = await service.generate_summary(user.id, YESTERDAY)

        assert result.summary == frozen
        assert "Deferred to Backlog: 1" in result.summary
        rewriter.rewrite.assert_awaited_once_with(YESTERDAY, frozen)

    @pytest.mark.asyncio
    async def test_sweep_during_rewrite_keeps_frozen_summary(self, db, user):
        class SweepingRewriter:
            """Sweeps the day while the rewrite is in flight."""

            async def rewrite(self, date, deterministic_summary):
                sweep_all_past_unswept(db, user.id, TODAY, now=NOW)
                return RewriteResult(ok=True, text="Rewritten.")

        service = DayService(db, rewriter=SweepingRewriter())
        _yesterday_with_work(service, user)

        result = await service.generate_summary(user.id, YESTERDAY)

        stored = service.get_day(user.id, YESTERDAY, NOW).daily_log
        assert stored.swept_at == NOW.isoformat()
        assert stored.summary.endswith("Deferred to Backlog: 1")
        assert result.summary == stored.summary
        assert stored.ai_summary == "Rewritten."

    @pytest.mark.asyncio
    async def test_sweep_during_failed_rewrite_keeps_frozen_summary(self, db, user):
        class SweepingFailingRewriter:
            async def rewrite(self, date, deterministic_summary):
                sweep_all_past_unswept(db, user.id, TODAY, now=NOW)
                return RewriteResult(ok=False, error="timed out")

        service = DayService(db, rewriter=SweepingFailingRewriter())
        _yesterday_with_work(service, user)

        result = await service.generate_summary(user.id, YESTERDAY)

        stored = service.get_day(user.id, YESTERDAY, NOW).daily_log
        assert stored.summary.endswith("Deferred to Backlog: 1")
        assert result.summary == stored.summary
        assert result.ai_error == "timed out"
        assert stored.ai_summary is None

    @pytest.mark.asyncio
    async def test_missing_day(self, service, user):
        with pytest.raises(NotFound):
            await service.generate_summary(user.id, TODAY)

"""
HourLog — SQLite storage.

One database file holds users, days, hour slots, todos and the backlog.
All writes go through Database.transaction(), which takes SQLite's write
lock up front (BEGIN IMMEDIATE) so every read-modify-write sequence inside
it is serialized against other writers and commits or rolls back as a unit.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, TypeVar

from hourlog.data.models import (
    BacklogItem,
    DailyLog,
    DailyLogStatus,
    HourBlock,
    Todo,
    TodoStatus,
    User,
)
from hourlog.errors import Conflict

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    display_name  TEXT NOT NULL,
    timezone      TEXT NOT NULL DEFAULT 'UTC',
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_logs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    date        TEXT    NOT NULL,
    status      TEXT    NOT NULL,
    is_locked   INTEGER NOT NULL DEFAULT 0,
    score       INTEGER,
    summary     TEXT,
    ai_summary  TEXT,
    swept_at    TEXT,
    UNIQUE (user_id, date)
);

CREATE TABLE IF NOT EXISTS hour_blocks (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    daily_log_id     INTEGER NOT NULL REFERENCES daily_logs(id) ON DELETE CASCADE,
    hour             INTEGER NOT NULL CHECK (hour BETWEEN 0 AND 23),
    planned_text     TEXT    NOT NULL DEFAULT '',
    reflection_text  TEXT    NOT NULL DEFAULT '',
    UNIQUE (daily_log_id, hour)
);

CREATE TABLE IF NOT EXISTS todos (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    daily_log_id       INTEGER NOT NULL REFERENCES daily_logs(id) ON DELETE CASCADE,
    hour_block_id      INTEGER NOT NULL REFERENCES hour_blocks(id) ON DELETE CASCADE,
    title              TEXT    NOT NULL,
    estimated_minutes  INTEGER NOT NULL DEFAULT 0,
    actual_minutes     INTEGER,
    status             TEXT    NOT NULL DEFAULT 'PENDING',
    sort_order         INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_todos_block ON todos (hour_block_id, sort_order);
CREATE INDEX IF NOT EXISTS idx_todos_day ON todos (daily_log_id);

CREATE TABLE IF NOT EXISTS backlog_items (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title              TEXT    NOT NULL,
    estimated_minutes  INTEGER NOT NULL DEFAULT 0,
    actual_minutes     INTEGER,
    source_date        TEXT,
    source_hour        INTEGER,
    created_at         TEXT    NOT NULL
);
"""

# Columns added after the first release: table -> {column: DDL}
_ADDED_COLUMNS: dict[str, dict[str, str]] = {
    "daily_logs": {
        "ai_summary": "ALTER TABLE daily_logs ADD COLUMN ai_summary TEXT",
        "swept_at": "ALTER TABLE daily_logs ADD COLUMN swept_at TEXT",
    },
    "backlog_items": {
        "source_date": "ALTER TABLE backlog_items ADD COLUMN source_date TEXT",
        "source_hour": "ALTER TABLE backlog_items ADD COLUMN source_hour INTEGER",
    },
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_contention(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


class Database:
    """SQLite-backed storage for every HourLog table."""

    def __init__(self, db_path: str | None = None, busy_timeout: float | None = None) -> None:
        from hourlog.config import settings

        if db_path is None:
            db_path = settings.DATABASE_PATH
        if busy_timeout is None:
            busy_timeout = settings.DB_BUSY_TIMEOUT_SECONDS

        self._db_path = db_path
        self._busy_timeout = busy_timeout
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        conn = sqlite3.connect(
            self._db_path, timeout=self._busy_timeout, isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        """Create tables if they don't exist, and migrate older schemas."""
        conn = self._connect()
        try:
            conn.executescript(_SCHEMA)
            for table, columns in _ADDED_COLUMNS.items():
                existing_cols = {
                    row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
                }
                for column, ddl in columns.items():
                    if column not in existing_cols:
                        conn.execute(ddl)
                        logger.info("Migrated %s: added column %s", table, column)
        finally:
            conn.close()
        logger.debug("HourLog schema initialized at %s", self._db_path)

    @contextmanager
    def transaction(self) -> Iterator[LogStore]:
        """Run a block of reads and writes as one atomic unit.

        Lock contention that outlasts the busy timeout surfaces as Conflict;
        any exception rolls the whole block back.
        """
        conn = self._connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                if _is_contention(exc):
                    raise Conflict(f"Database busy: {exc}") from exc
                raise
            try:
                yield LogStore(conn)
                conn.execute("COMMIT")
            except sqlite3.OperationalError as exc:
                conn.execute("ROLLBACK")
                if _is_contention(exc):
                    raise Conflict(f"Database busy: {exc}") from exc
                raise
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def run_idempotent(
        self, work: Callable[[LogStore], T], retries: int | None = None,
    ) -> T:
        """Run work in a transaction, retrying it from scratch on Conflict.

        Only for work that is safe to repeat: each attempt re-reads state.
        """
        if retries is None:
            from hourlog.config import settings
            retries = settings.CONFLICT_RETRIES

        attempt = 0
        while True:
            try:
                with self.transaction() as store:
                    return work(store)
            except Conflict as exc:
                attempt += 1
                if attempt > retries:
                    raise
                logger.info("Retrying after conflict (attempt %d/%d): %s", attempt, retries, exc)

    @contextmanager
    def session(self) -> Iterator[LogStore]:
        """Autocommit access for plain reads and single-statement writes."""
        conn = self._connect()
        try:
            yield LogStore(conn)
        finally:
            conn.close()


class LogStore:
    """Table-level operations bound to one open connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Row converters
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            display_name=row["display_name"],
            timezone=row["timezone"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_daily_log(row: sqlite3.Row) -> DailyLog:
        return DailyLog(
            id=row["id"],
            user_id=row["user_id"],
            date=row["date"],
            status=DailyLogStatus(row["status"]),
            is_locked=bool(row["is_locked"]),
            score=row["score"],
            summary=row["summary"],
            ai_summary=row["ai_summary"],
            swept_at=row["swept_at"],
        )

    @staticmethod
    def _row_to_hour_block(row: sqlite3.Row) -> HourBlock:
        return HourBlock(
            id=row["id"],
            daily_log_id=row["daily_log_id"],
            hour=row["hour"],
            planned_text=row["planned_text"],
            reflection_text=row["reflection_text"],
        )

    @staticmethod
    def _row_to_todo(row: sqlite3.Row) -> Todo:
        return Todo(
            id=row["id"],
            daily_log_id=row["daily_log_id"],
            hour_block_id=row["hour_block_id"],
            title=row["title"],
            estimated_minutes=row["estimated_minutes"],
            actual_minutes=row["actual_minutes"],
            status=TodoStatus(row["status"]),
            sort_order=row["sort_order"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_backlog_item(row: sqlite3.Row) -> BacklogItem:
        return BacklogItem(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            estimated_minutes=row["estimated_minutes"],
            actual_minutes=row["actual_minutes"],
            source_date=row["source_date"],
            source_hour=row["source_hour"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def add_user(self, display_name: str, timezone_name: str) -> User:
        now = utc_now_iso()
        cursor = self._conn.execute(
            "INSERT INTO users (display_name, timezone, created_at) VALUES (?, ?, ?)",
            (display_name, timezone_name, now),
        )
        return User(
            id=cursor.lastrowid,
            display_name=display_name,
            timezone=timezone_name,
            created_at=now,
        )

    def get_user(self, user_id: int) -> User | None:
        row = self._conn.execute(
            "SELECT * FROM users WHERE id = ?", (user_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        rows = self._conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(r) for r in rows]

    def set_user_timezone(self, user_id: int, timezone_name: str) -> bool:
        cursor = self._conn.execute(
            "UPDATE users SET timezone = ? WHERE id = ?", (timezone_name, user_id),
        )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Daily logs
    # ------------------------------------------------------------------

    def insert_daily_log_if_absent(
        self, user_id: int, date: str, status: DailyLogStatus,
    ) -> bool:
        """Insert an unlocked day unless (user_id, date) exists. True if inserted."""
        cursor = self._conn.execute(
            """
            INSERT OR IGNORE INTO daily_logs (user_id, date, status, is_locked)
            VALUES (?, ?, ?, 0)
            """,
            (user_id, date, status.value),
        )
        return cursor.rowcount > 0

    def get_daily_log(self, user_id: int, date: str) -> DailyLog | None:
        row = self._conn.execute(
            "SELECT * FROM daily_logs WHERE user_id = ? AND date = ?",
            (user_id, date),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_daily_log(row)

    def get_daily_log_by_id(self, daily_log_id: int) -> DailyLog | None:
        row = self._conn.execute(
            "SELECT * FROM daily_logs WHERE id = ?", (daily_log_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_daily_log(row)

    def set_open_day_status(self, daily_log_id: int, status: DailyLogStatus) -> bool:
        """Update status of a day that has not been swept. True if changed."""
        cursor = self._conn.execute(
            """
            UPDATE daily_logs SET status = ?
            WHERE id = ? AND swept_at IS NULL AND status != ?
            """,
            (status.value, daily_log_id, status.value),
        )
        return cursor.rowcount > 0

    def set_locked(self, daily_log_id: int, locked: bool) -> None:
        self._conn.execute(
            "UPDATE daily_logs SET is_locked = ? WHERE id = ?",
            (int(locked), daily_log_id),
        )

    def set_summary(self, daily_log_id: int, summary: str) -> None:
        self._conn.execute(
            "UPDATE daily_logs SET summary = ? WHERE id = ?", (summary, daily_log_id),
        )

    def set_ai_summary(self, daily_log_id: int, ai_summary: str) -> None:
        self._conn.execute(
            "UPDATE daily_logs SET ai_summary = ? WHERE id = ?", (ai_summary, daily_log_id),
        )

    def close_daily_log(
        self, daily_log_id: int, score: int, summary: str, swept_at: str,
    ) -> bool:
        """Mark an open day swept. Score and summary are kept if already set.

        Returns False when the day was already swept by someone else.
        """
        cursor = self._conn.execute(
            """
            UPDATE daily_logs
            SET status    = ?,
                is_locked = 1,
                swept_at  = ?,
                score     = COALESCE(score, ?),
                summary   = COALESCE(summary, ?)
            WHERE id = ? AND swept_at IS NULL
            """,
            (DailyLogStatus.HISTORY.value, swept_at, score, summary, daily_log_id),
        )
        return cursor.rowcount > 0

    def list_unswept_dates_before(self, user_id: int, today: str) -> list[str]:
        rows = self._conn.execute(
            """
            SELECT date FROM daily_logs
            WHERE user_id = ? AND swept_at IS NULL AND date < ?
            ORDER BY date
            """,
            (user_id, today),
        ).fetchall()
        return [r["date"] for r in rows]

    # ------------------------------------------------------------------
    # Hour blocks
    # ------------------------------------------------------------------

    def insert_hour_blocks(self, daily_log_id: int, hours: Iterable[int]) -> int:
        """Insert empty slots for the given hours, skipping existing ones."""
        cursor = self._conn.executemany(
            """
            INSERT OR IGNORE INTO hour_blocks
                (daily_log_id, hour, planned_text, reflection_text)
            VALUES (?, ?, '', '')
            """,
            [(daily_log_id, h) for h in hours],
        )
        return max(cursor.rowcount, 0)

    def list_hours(self, daily_log_id: int) -> set[int]:
        rows = self._conn.execute(
            "SELECT hour FROM hour_blocks WHERE daily_log_id = ?", (daily_log_id,),
        ).fetchall()
        return {r["hour"] for r in rows}

    def list_hour_blocks(self, daily_log_id: int) -> list[HourBlock]:
        rows = self._conn.execute(
            "SELECT * FROM hour_blocks WHERE daily_log_id = ? ORDER BY hour",
            (daily_log_id,),
        ).fetchall()
        return [self._row_to_hour_block(r) for r in rows]

    def get_hour_block(self, block_id: int) -> HourBlock | None:
        row = self._conn.execute(
            "SELECT * FROM hour_blocks WHERE id = ?", (block_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_hour_block(row)

    def get_hour_block_by_hour(self, daily_log_id: int, hour: int) -> HourBlock | None:
        row = self._conn.execute(
            "SELECT * FROM hour_blocks WHERE daily_log_id = ? AND hour = ?",
            (daily_log_id, hour),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_hour_block(row)

    def set_planned_text(self, block_id: int, text: str) -> None:
        self._conn.execute(
            "UPDATE hour_blocks SET planned_text = ? WHERE id = ?", (text, block_id),
        )

    def set_reflection_text(self, block_id: int, text: str) -> None:
        self._conn.execute(
            "UPDATE hour_blocks SET reflection_text = ? WHERE id = ?", (text, block_id),
        )

    # ------------------------------------------------------------------
    # Todos
    # ------------------------------------------------------------------

    def insert_todo(
        self,
        daily_log_id: int,
        hour_block_id: int,
        title: str,
        estimated_minutes: int,
        actual_minutes: int | None,
        sort_order: int,
    ) -> Todo:
        now = utc_now_iso()
        cursor = self._conn.execute(
            """
            INSERT INTO todos
                (daily_log_id, hour_block_id, title, estimated_minutes,
                 actual_minutes, status, sort_order, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                daily_log_id, hour_block_id, title, estimated_minutes,
                actual_minutes, TodoStatus.PENDING.value, sort_order, now,
            ),
        )
        return Todo(
            id=cursor.lastrowid,
            daily_log_id=daily_log_id,
            hour_block_id=hour_block_id,
            title=title,
            estimated_minutes=estimated_minutes,
            actual_minutes=actual_minutes,
            status=TodoStatus.PENDING,
            sort_order=sort_order,
            created_at=now,
        )

    def get_todo(self, todo_id: int) -> Todo | None:
        row = self._conn.execute(
            "SELECT * FROM todos WHERE id = ?", (todo_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_todo(row)

    def list_block_todos(self, hour_block_id: int) -> list[Todo]:
        """Todos of one slot in display order."""
        rows = self._conn.execute(
            """
            SELECT * FROM todos WHERE hour_block_id = ?
            ORDER BY sort_order, created_at, id
            """,
            (hour_block_id,),
        ).fetchall()
        return [self._row_to_todo(r) for r in rows]

    def list_day_todos(self, daily_log_id: int) -> list[tuple[int, Todo]]:
        """(hour, todo) pairs for a whole day, by hour then display order."""
        rows = self._conn.execute(
            """
            SELECT t.*, b.hour AS block_hour
            FROM todos t JOIN hour_blocks b ON b.id = t.hour_block_id
            WHERE t.daily_log_id = ?
            ORDER BY b.hour, t.sort_order, t.created_at, t.id
            """,
            (daily_log_id,),
        ).fetchall()
        return [(r["block_hour"], self._row_to_todo(r)) for r in rows]

    def set_todo_block(self, todo_id: int, hour_block_id: int) -> None:
        self._conn.execute(
            "UPDATE todos SET hour_block_id = ? WHERE id = ?", (hour_block_id, todo_id),
        )

    def set_sort_orders(self, orders: Iterable[tuple[int, int]]) -> None:
        """Apply (todo_id, sort_order) pairs."""
        self._conn.executemany(
            "UPDATE todos SET sort_order = ? WHERE id = ?",
            [(order, todo_id) for todo_id, order in orders],
        )

    def set_todo_status(self, todo_id: int, status: TodoStatus) -> None:
        self._conn.execute(
            "UPDATE todos SET status = ? WHERE id = ?", (status.value, todo_id),
        )

    def set_block_todo_status(self, hour_block_id: int, status: TodoStatus) -> int:
        cursor = self._conn.execute(
            "UPDATE todos SET status = ? WHERE hour_block_id = ?",
            (status.value, hour_block_id),
        )
        return cursor.rowcount

    def set_todo_estimate(self, todo_id: int, minutes: int) -> None:
        self._conn.execute(
            "UPDATE todos SET estimated_minutes = ? WHERE id = ?", (minutes, todo_id),
        )

    def set_todo_actual(self, todo_id: int, minutes: int | None) -> None:
        self._conn.execute(
            "UPDATE todos SET actual_minutes = ? WHERE id = ?", (minutes, todo_id),
        )

    def delete_todos(self, todo_ids: Iterable[int]) -> int:
        cursor = self._conn.executemany(
            "DELETE FROM todos WHERE id = ?", [(i,) for i in todo_ids],
        )
        return max(cursor.rowcount, 0)

    # ------------------------------------------------------------------
    # Backlog
    # ------------------------------------------------------------------

    def insert_backlog_item(
        self,
        user_id: int,
        title: str,
        estimated_minutes: int,
        actual_minutes: int | None,
        source_date: str | None = None,
        source_hour: int | None = None,
    ) -> BacklogItem:
        now = utc_now_iso()
        cursor = self._conn.execute(
            """
            INSERT INTO backlog_items
                (user_id, title, estimated_minutes, actual_minutes,
                 source_date, source_hour, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, title, estimated_minutes, actual_minutes,
             source_date, source_hour, now),
        )
        return BacklogItem(
            id=cursor.lastrowid,
            user_id=user_id,
            title=title,
            estimated_minutes=estimated_minutes,
            actual_minutes=actual_minutes,
            source_date=source_date,
            source_hour=source_hour,
            created_at=now,
        )

    def get_backlog_item(self, item_id: int) -> BacklogItem | None:
        row = self._conn.execute(
            "SELECT * FROM backlog_items WHERE id = ?", (item_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_backlog_item(row)

    def count_backlog(self, user_id: int) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS c FROM backlog_items WHERE user_id = ?", (user_id,),
        ).fetchone()
        return int(row["c"])

    def list_backlog(self, user_id: int, limit: int, offset: int) -> list[BacklogItem]:
        """Newest first."""
        rows = self._conn.execute(
            """
            SELECT * FROM backlog_items WHERE user_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, limit, offset),
        ).fetchall()
        return [self._row_to_backlog_item(r) for r in rows]

    def delete_backlog_item(self, item_id: int) -> bool:
        cursor = self._conn.execute(
            "DELETE FROM backlog_items WHERE id = ?", (item_id,),
        )
        return cursor.rowcount > 0

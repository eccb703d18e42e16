"""
SQLite database initialization, connection and transaction management.

Single responsibility: own the connections, create tables, and hand out
transaction scopes. All actual queries live in the stores and services.

Concurrency model:
    - one writer connection; every mutation runs inside BEGIN IMMEDIATE under
      a process-wide lock, so there is exactly one logical writer at a time
    - readers get a thread-local connection and a deferred transaction, which
      in WAL mode is a consistent snapshot of committed state
    - a read issued inside a write scope on the same thread reuses the writer
      connection and sees the in-flight changes
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from activity_engine.config import BUSY_TIMEOUT_SECONDS, DEFAULT_DB_PATH
from activity_engine.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- Applications -------------------------------------------------------------
CREATE TABLE IF NOT EXISTS apps (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    bundle_id       TEXT    NOT NULL UNIQUE,
    name            TEXT    NOT NULL,
    category        TEXT    NOT NULL DEFAULT 'other',
    is_distraction  INTEGER NOT NULL DEFAULT 0,
    first_seen      REAL    NOT NULL
);

-- Minute counters -----------------------------------------------------------
CREATE TABLE IF NOT EXISTS minute_counters (
    timestamp        INTEGER NOT NULL,
    app_id           INTEGER NOT NULL REFERENCES apps(id) ON DELETE CASCADE,
    keystrokes       INTEGER NOT NULL DEFAULT 0,
    clicks           INTEGER NOT NULL DEFAULT 0,
    scroll_distance  INTEGER NOT NULL DEFAULT 0,
    pointer_distance INTEGER NOT NULL DEFAULT 0,
    active_seconds   INTEGER NOT NULL DEFAULT 0,
    idle_seconds     INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (timestamp, app_id)
);

-- Focus sessions ------------------------------------------------------------
CREATE TABLE IF NOT EXISTS focus_sessions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    start_time      REAL    NOT NULL,
    end_time        REAL,
    primary_app_id  INTEGER REFERENCES apps(id) ON DELETE SET NULL,
    keystrokes      INTEGER NOT NULL DEFAULT 0,
    clicks          INTEGER NOT NULL DEFAULT 0,
    interruptions   INTEGER NOT NULL DEFAULT 0
);

-- Daily rollups -------------------------------------------------------------
CREATE TABLE IF NOT EXISTS daily_rollups (
    date                  TEXT    PRIMARY KEY,
    total_active_seconds  INTEGER NOT NULL DEFAULT 0,
    total_focus_seconds   INTEGER NOT NULL DEFAULT 0,
    first_activity        INTEGER,
    last_activity         INTEGER,
    total_keystrokes      INTEGER NOT NULL DEFAULT 0,
    total_clicks          INTEGER NOT NULL DEFAULT 0,
    total_scroll          INTEGER NOT NULL DEFAULT 0,
    focus_score           REAL    NOT NULL DEFAULT 0,
    productivity_score    REAL    NOT NULL DEFAULT 0,
    top_apps_json         TEXT    NOT NULL DEFAULT '[]',
    hourly_breakdown_json TEXT    NOT NULL DEFAULT '{}'
);

-- Earned achievements (append-only) -----------------------------------------
CREATE TABLE IF NOT EXISTS earned_achievements (
    achievement_id  TEXT PRIMARY KEY,
    earned_at       REAL NOT NULL
);

-- Auxiliary payloads --------------------------------------------------------
CREATE TABLE IF NOT EXISTS raw_events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp   REAL    NOT NULL,
    event_type  TEXT    NOT NULL,
    data        BLOB    NOT NULL
);

-- Indexes for common queries -------------------------------------------------
CREATE INDEX IF NOT EXISTS idx_minute_counters_app   ON minute_counters(app_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_focus_sessions_start  ON focus_sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_raw_events_type_time  ON raw_events(event_type, timestamp);

-- At most one open focus session
CREATE UNIQUE INDEX IF NOT EXISTS idx_focus_sessions_single_open
    ON focus_sessions((end_time IS NULL)) WHERE end_time IS NULL;
"""

MEMORY_PATH = ":memory:"


class Database:
    """Owns the SQLite connections and hands out transaction scopes."""

    def __init__(self, db_path: Optional[Union[Path, str]] = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.RLock()
        self._local = threading.local()
        # (owning thread, connection) for every reader handed out
        self._readers: List[Tuple[threading.Thread, sqlite3.Connection]] = []
        self._readers_lock = threading.Lock()

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == MEMORY_PATH

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open (or return existing) writer connection and ensure schema exists."""
        if self.conn is not None:
            return self.conn
        logger.info("Connecting to SQLite at %s", self.db_path)
        conn = None
        try:
            if not self.in_memory:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = self._open()
            if not self.in_memory:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA_SQL)
        except (sqlite3.Error, OSError) as exc:
            if conn is not None:
                conn.close()
            raise StoreUnavailableError(
                f"Cannot open store at {self.db_path}: {exc}"
            ) from exc
        self.conn = conn
        logger.info("Database schema ensured.")
        return self.conn

    def close(self) -> None:
        with self._readers_lock:
            for _, reader in self._readers:
                reader.close()
            self._readers.clear()
        self._local = threading.local()
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed.")

    # -- transactions --------------------------------------------------------

    @contextmanager
    def write(self) -> Iterator[sqlite3.Connection]:
        """
        Serialized write transaction.

        Nested write scopes on the same thread join the outer transaction.
        OperationalError inside the scope rolls back and surfaces as
        StoreUnavailableError; anything else rolls back and propagates as is.
        """
        conn = self.connect()
        with self._write_lock:
            depth = getattr(self._local, "write_depth", 0)
            if depth > 0:
                self._local.write_depth = depth + 1
                try:
                    yield conn
                finally:
                    self._local.write_depth = depth
                return

            self._execute_control(conn, "BEGIN IMMEDIATE")
            self._local.write_depth = 1
            try:
                yield conn
            except sqlite3.OperationalError as exc:
                self._rollback(conn)
                raise StoreUnavailableError(f"Write failed: {exc}") from exc
            except BaseException:
                self._rollback(conn)
                raise
            else:
                try:
                    self._execute_control(conn, "COMMIT")
                except StoreUnavailableError:
                    self._rollback(conn)
                    raise
            finally:
                self._local.write_depth = 0

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Read scope over a consistent snapshot of committed state."""
        if getattr(self._local, "write_depth", 0) > 0:
            yield self.conn
            return

        if self.in_memory:
            # one connection holds the whole database; reads wait for writers
            conn = self.connect()
            with self._write_lock:
                try:
                    yield conn
                except sqlite3.OperationalError as exc:
                    raise StoreUnavailableError(f"Read failed: {exc}") from exc
            return

        conn = self._reader()
        if conn.in_transaction:
            # nested read scope joins the outer snapshot
            yield conn
            return
        self._execute_control(conn, "BEGIN")
        try:
            yield conn
        except sqlite3.OperationalError as exc:
            raise StoreUnavailableError(f"Read failed: {exc}") from exc
        finally:
            if conn.in_transaction:
                conn.execute("COMMIT")

    # -- internal ------------------------------------------------------------

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=BUSY_TIMEOUT_SECONDS,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row          # dict-like rows
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _reader(self) -> sqlite3.Connection:
        self.connect()
        conn = getattr(self._local, "reader", None)
        if conn is None:
            try:
                conn = self._open()
            except sqlite3.Error as exc:
                raise StoreUnavailableError(
                    f"Cannot open reader for {self.db_path}: {exc}"
                ) from exc
            self._local.reader = conn
            with self._readers_lock:
                self._close_dead_readers()
                self._readers.append((threading.current_thread(), conn))
        return conn

    def _close_dead_readers(self) -> None:
        """Close readers whose thread has exited. Caller holds _readers_lock."""
        alive = []
        for thread, conn in self._readers:
            if thread.is_alive():
                alive.append((thread, conn))
            else:
                conn.close()
        if len(alive) < len(self._readers):
            logger.debug("Closed %d reader(s) of finished threads",
                         len(self._readers) - len(alive))
        self._readers = alive

    @property
    def reader_count(self) -> int:
        with self._readers_lock:
            return len(self._readers)

    @staticmethod
    def _execute_control(conn: sqlite3.Connection, statement: str) -> None:
        try:
            conn.execute(statement)
        except sqlite3.OperationalError as exc:
            raise StoreUnavailableError(f"{statement} failed: {exc}") from exc

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------
# What this file does:
#   Manages the SQLite connections and makes sure all tables exist on startup.
#
# Key pieces:
#   - SCHEMA_SQL: the full DDL. CREATE IF NOT EXISTS makes it idempotent.
#     UNIQUE(bundle_id), PRIMARY KEY(timestamp, app_id), PRIMARY KEY(date) and
#     PRIMARY KEY(achievement_id) carry the "one row per key" invariants; the
#     partial unique index carries "at most one open focus session".
#   - Database.write(): BEGIN IMMEDIATE ... COMMIT under a lock.
#   - Database.read(): thread-local reader with a deferred snapshot.
#
# Data flow:
#   Process start → Database.connect() → tables created → stores/services
#   receive the same Database instance and open scopes per operation.

"""
Session Service — orchestrates the lifecycle of a focus session.

Handles: start, end, interruptions, and back-filling session metrics from the
counter store when a session closes.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Callable, List, Optional

from activity_engine.data.counter_store import CounterStore
from activity_engine.data.database import Database
from activity_engine.data.dates import DayLike, day_bounds
from activity_engine.data.models import FocusSession

logger = logging.getLogger(__name__)


class SessionState:
    """The two states a session lifecycle can be in."""
    CLOSED = "closed"
    OPEN = "open"


class SessionService:
    """
    Manages the lifecycle of focus sessions.

    Only ONE session can be open at a time. State transitions:
        closed → start() → open → end() → closed

    Both transitions are idempotent: start() while open returns the open
    session, end() on a closed session returns it unchanged. Duplicate
    UI-triggered calls are therefore harmless.
    """

    def __init__(
        self,
        db: Database,
        counters: CounterStore,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.db = db
        self.counters = counters
        self.clock = clock

    @property
    def state(self) -> str:
        return SessionState.OPEN if self.active_session() else SessionState.CLOSED

    # ── Session lifecycle ───────────────────────────────────────────────────

    def start(self, primary_app_id: Optional[int] = None) -> FocusSession:
        """Open a session, or return the one already open."""
        with self.db.write() as conn:
            existing = self._open_session(conn)
            if existing:
                logger.debug("Session %d already open; start() is a no-op", existing.id)
                return existing

            now = self.clock()
            cur = conn.execute(
                "INSERT INTO focus_sessions (start_time, primary_app_id) VALUES (?, ?)",
                (now.timestamp(), primary_app_id),
            )
            session = FocusSession(id=cur.lastrowid, start_time=now,
                                   primary_app_id=primary_app_id)
        logger.info("Focus session %d started", session.id)
        return session

    def end(self, session_id: int) -> Optional[FocusSession]:
        """
        Close a session and back-fill its keystrokes/clicks.

        Returns None for an unknown id and the unchanged row for a session
        that is already closed. The counter query and the update share one
        write transaction, so nobody observes the session closed without
        its metrics.
        """
        with self.db.write() as conn:
            row = conn.execute(
                "SELECT * FROM focus_sessions WHERE id = ?", (session_id,)
            ).fetchone()
            if row is None:
                logger.debug("end() for unknown session %s", session_id)
                return None
            session = self._row_to_session(row)
            if not session.is_open:
                return session

            session.end_time = max(self.clock(), session.start_time)
            totals = self.counters.totals(
                int(session.start_time.timestamp()),
                int(session.end_time.timestamp()),
                app_id=session.primary_app_id,
                inclusive_end=True,
            )
            session.keystrokes = totals.keystrokes
            session.clicks = totals.clicks

            conn.execute(
                "UPDATE focus_sessions SET end_time = ?, keystrokes = ?, clicks = ? "
                "WHERE id = ?",
                (session.end_time.timestamp(), session.keystrokes, session.clicks,
                 session.id),
            )
        logger.info("Focus session %d ended after %ss", session.id, session.duration_seconds)
        return session

    def end_active(self) -> Optional[FocusSession]:
        """Close whichever session is open; None when nothing is open."""
        with self.db.write():
            active = self.active_session()
            if active is None:
                return None
            return self.end(active.id)

    def record_interruption(self) -> Optional[FocusSession]:
        """Count one interruption against the open session, if any."""
        with self.db.write() as conn:
            session = self._open_session(conn)
            if session is None:
                return None
            conn.execute(
                "UPDATE focus_sessions SET interruptions = interruptions + 1 WHERE id = ?",
                (session.id,),
            )
            session.interruptions += 1
        return session

    # ── Queries ─────────────────────────────────────────────────────────────

    def active_session(self) -> Optional[FocusSession]:
        with self.db.read() as conn:
            return self._open_session(conn)

    def get(self, session_id: int) -> Optional[FocusSession]:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM focus_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row) if row else None

    def sessions_for_day(self, day: DayLike) -> List[FocusSession]:
        """Sessions that started on the given local day, newest first."""
        start, end = day_bounds(day)
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM focus_sessions WHERE start_time >= ? AND start_time < ? "
                "ORDER BY start_time DESC",
                (start, end),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def recent(self, limit: int = 10) -> List[FocusSession]:
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM focus_sessions ORDER BY start_time DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def sessions_overlapping(self, start: float, end: float) -> List[FocusSession]:
        """Closed sessions whose interval intersects [start, end)."""
        if start > end:
            return []
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM focus_sessions WHERE end_time IS NOT NULL "
                "AND start_time < ? AND end_time > ? ORDER BY start_time, id",
                (end, start),
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def focus_seconds(self, start: float, end: float) -> int:
        """
        Focus time inside [start, end).

        Each session contributes only its overlap with the window, so a
        session that spans midnight is split between the two days.
        """
        total = 0
        for s in self.sessions_overlapping(start, end):
            overlap_start = max(s.start_time.timestamp(), start)
            overlap_end = min(s.end_time.timestamp(), end)
            total += int(max(0.0, overlap_end - overlap_start))
        return total

    def closed_sessions(self) -> List[FocusSession]:
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM focus_sessions WHERE end_time IS NOT NULL ORDER BY start_time"
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def closed_count(self) -> int:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM focus_sessions WHERE end_time IS NOT NULL"
            ).fetchone()
        return row[0]

    def longest_session_minutes(self) -> int:
        durations = [s.duration_seconds or 0 for s in self.closed_sessions()]
        return max(durations, default=0) // 60

    def deep_work_count(self) -> int:
        return sum(1 for s in self.closed_sessions() if s.is_deep_work)

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _open_session(self, conn: sqlite3.Connection) -> Optional[FocusSession]:
        row = conn.execute(
            "SELECT * FROM focus_sessions WHERE end_time IS NULL "
            "ORDER BY start_time DESC LIMIT 1"
        ).fetchone()
        return self._row_to_session(row) if row else None

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> FocusSession:
        return FocusSession(
            id=row["id"],
            start_time=datetime.fromtimestamp(row["start_time"]),
            end_time=datetime.fromtimestamp(row["end_time"]) if row["end_time"] is not None else None,
            primary_app_id=row["primary_app_id"],
            keystrokes=row["keystrokes"],
            clicks=row["clicks"],
            interruptions=row["interruptions"],
        )


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------
# What this file does:
#   Manages the lifecycle of focus sessions (start, end, interruptions)
#   and answers the session queries the rollup and achievement passes need.
#
# Key classes:
#   - SessionState: constants for the two states (closed, open).
#   - SessionService: enforces the single-open-session invariant inside write
#     transactions and computes metrics when a session ends.
#
# Data flow:
#   UI "Start focus" → SessionService.start() → focus_sessions row (open)
#   → UI "Stop" → SessionService.end() → counter sums over [start, end]
#   → row closed with keystrokes/clicks → RollupService counts the overlap.

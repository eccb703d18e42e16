"""
Rollup Service — recomputes the daily summary for a local calendar date.

A rollup is never patched. aggregate() reads the counters, apps and sessions
for the day and replaces the whole row, all inside one write transaction.
Running it twice on unchanged inputs writes identical bytes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional

from activity_engine.config import TOP_APPS_LIMIT
from activity_engine.data.app_registry import AppRegistry
from activity_engine.data.counter_store import CounterStore
from activity_engine.data.database import Database
from activity_engine.data.dates import DayLike, day_bounds, format_date, to_date
from activity_engine.data.models import AppUsageSummary, DailyRollup, PeriodStats
from activity_engine.services.session_service import SessionService

logger = logging.getLogger(__name__)


def _canonical_json(value) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _score(part: int, whole: int) -> float:
    """Percentage of part in whole, capped at 100; 0 when whole is 0."""
    if whole <= 0:
        return 0.0
    return min(100.0, part / whole * 100.0)


class RollupService:
    """Builds, stores and reads DailyRollup rows."""

    def __init__(
        self,
        db: Database,
        counters: CounterStore,
        registry: AppRegistry,
        sessions: SessionService,
        top_apps_limit: int = TOP_APPS_LIMIT,
    ) -> None:
        self.db = db
        self.counters = counters
        self.registry = registry
        self.sessions = sessions
        self.top_apps_limit = top_apps_limit

    # ── Aggregation ─────────────────────────────────────────────────────────

    def aggregate(self, day: DayLike) -> DailyRollup:
        """Recompute and replace the rollup for one local date."""
        start, end = day_bounds(day)
        with self.db.write() as conn:
            totals = self.counters.totals(start, end)
            focus_seconds = self.sessions.focus_seconds(start, end)
            productive_seconds = self._productive_seconds(conn, start, end)

            top_apps = [
                AppUsageSummary(
                    app_id=u.app_id, bundle_id=u.bundle_id, name=u.name,
                    seconds=u.total_seconds, keystrokes=u.keystrokes,
                ).to_dict()
                for u in self.registry.top_apps(start, end, self.top_apps_limit)
            ]
            hourly = self.counters.hourly_breakdown(start, end)
            breakdown = {str(hour): seconds for hour, seconds in enumerate(hourly) if seconds}

            rollup = DailyRollup(
                date=format_date(day),
                total_active_seconds=totals.active_seconds,
                total_focus_seconds=focus_seconds,
                first_activity=self._dt(totals.first_timestamp),
                last_activity=self._dt(totals.last_timestamp),
                total_keystrokes=totals.keystrokes,
                total_clicks=totals.clicks,
                total_scroll=totals.scroll_distance,
                focus_score=_score(focus_seconds, totals.active_seconds),
                productivity_score=_score(productive_seconds, totals.active_seconds),
                top_apps_json=_canonical_json(top_apps),
                hourly_breakdown_json=_canonical_json(breakdown),
            )

            conn.execute(
                """INSERT OR REPLACE INTO daily_rollups (
                    date, total_active_seconds, total_focus_seconds,
                    first_activity, last_activity, total_keystrokes,
                    total_clicks, total_scroll, focus_score, productivity_score,
                    top_apps_json, hourly_breakdown_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    rollup.date,
                    rollup.total_active_seconds,
                    rollup.total_focus_seconds,
                    totals.first_timestamp,
                    totals.last_timestamp,
                    rollup.total_keystrokes,
                    rollup.total_clicks,
                    rollup.total_scroll,
                    rollup.focus_score,
                    rollup.productivity_score,
                    rollup.top_apps_json,
                    rollup.hourly_breakdown_json,
                ),
            )
        logger.debug("Rollup %s: active=%ds focus=%ds", rollup.date,
                     rollup.total_active_seconds, rollup.total_focus_seconds)
        return rollup

    def aggregate_range(self, start_day: DayLike, end_day: DayLike) -> List[DailyRollup]:
        """Aggregate every date from start_day to end_day inclusive."""
        first, last = to_date(start_day), to_date(end_day)
        rollups: List[DailyRollup] = []
        current = first
        while current <= last:
            rollups.append(self.aggregate(current))
            current += timedelta(days=1)
        logger.info("Backfilled %d rollups (%s → %s)", len(rollups), first, last)
        return rollups

    # ── Reads ───────────────────────────────────────────────────────────────

    def get_rollup(self, day: DayLike) -> Optional[DailyRollup]:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM daily_rollups WHERE date = ?", (format_date(day),)
            ).fetchone()
        return self._row_to_rollup(row) if row else None

    def list_rollups(self, start_day: DayLike, end_day: DayLike) -> List[DailyRollup]:
        first, last = format_date(start_day), format_date(end_day)
        if first > last:
            return []
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM daily_rollups WHERE date >= ? AND date <= ? ORDER BY date",
                (first, last),
            ).fetchall()
        return [self._row_to_rollup(r) for r in rows]

    def all_rollups(self) -> List[DailyRollup]:
        with self.db.read() as conn:
            rows = conn.execute("SELECT * FROM daily_rollups ORDER BY date").fetchall()
        return [self._row_to_rollup(r) for r in rows]

    def period_stats(self, start: int, end: int) -> PeriodStats:
        """Totals, closed-session count and distinct apps over [start, end)."""
        if start > end:
            return PeriodStats()
        with self.db.read() as conn:
            totals = self.counters.totals(start, end)
            row = conn.execute(
                "SELECT COUNT(*) FROM focus_sessions "
                "WHERE start_time >= ? AND start_time < ? AND end_time IS NOT NULL",
                (start, end),
            ).fetchone()
            unique_apps = self.counters.unique_app_count(start, end)
        return PeriodStats(
            active_seconds=totals.active_seconds,
            keystrokes=totals.keystrokes,
            clicks=totals.clicks,
            scroll_distance=totals.scroll_distance,
            focus_sessions=row[0],
            unique_apps=unique_apps,
        )

    # ── Helpers ─────────────────────────────────────────────────────────────

    @staticmethod
    def _productive_seconds(conn: sqlite3.Connection, start: int, end: int) -> int:
        row = conn.execute(
            """
            SELECT COALESCE(SUM(m.active_seconds), 0)
            FROM minute_counters m
            JOIN apps a ON a.id = m.app_id
            WHERE m.timestamp >= ? AND m.timestamp < ? AND a.is_distraction = 0
            """,
            (start, end),
        ).fetchone()
        return row[0]

    @staticmethod
    def _dt(ts: Optional[int]) -> Optional[datetime]:
        return datetime.fromtimestamp(ts) if ts is not None else None

    @classmethod
    def _row_to_rollup(cls, row: sqlite3.Row) -> DailyRollup:
        return DailyRollup(
            date=row["date"],
            total_active_seconds=row["total_active_seconds"],
            total_focus_seconds=row["total_focus_seconds"],
            first_activity=cls._dt(row["first_activity"]),
            last_activity=cls._dt(row["last_activity"]),
            total_keystrokes=row["total_keystrokes"],
            total_clicks=row["total_clicks"],
            total_scroll=row["total_scroll"],
            focus_score=row["focus_score"],
            productivity_score=row["productivity_score"],
            top_apps_json=row["top_apps_json"],
            hourly_breakdown_json=row["hourly_breakdown_json"],
        )


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------
# What this file does:
#   Turns one day of raw counters and sessions into a DailyRollup row.
#
# Steps inside aggregate():
#   1. counter totals + first/last minute for the local day
#   2. focus seconds = Σ overlap(session, day) over closed sessions
#   3. focus score = min(100, 100·focus/active), 0 when active = 0
#   4. productivity score = 100·(active in non-distraction apps)/active
#   5. top apps (ties by app id) and the hour histogram as compact JSON
#   6. INSERT OR REPLACE of the full row
#
# Data flow:
#   TrackingService tick / AchievementService.check_all() → aggregate(today)
#   → daily_rollups → presentation layer reads get_rollup()/list_rollups().

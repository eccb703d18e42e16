"""
App Registry — maps bundle identifiers to internal app keys and categories.

find_or_create() is the only way apps come into existence. The internal id is
assigned once by SQLite and never reused; apps are never deleted.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from datetime import datetime
from typing import List, Optional

from activity_engine.data.categories import category_for_bundle
from activity_engine.data.database import Database
from activity_engine.data.models import App, AppCategory, AppUsage, MinuteCounter

logger = logging.getLogger(__name__)


class AppRegistry:
    """Data-access layer for the apps table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ── Find or create ──────────────────────────────────────────────────────

    def find_or_create(self, bundle_id: str, name: str) -> App:
        """
        Return the app for bundle_id, inserting it on first observation.

        Another writer (e.g. the collector process) may insert the same
        bundle id between our read and our insert; the UNIQUE constraint
        rejects the second insert and we read back the winner's row.
        """
        with self.db.write() as conn:
            row = conn.execute(
                "SELECT * FROM apps WHERE bundle_id = ?", (bundle_id,)
            ).fetchone()
            if row:
                return self._row_to_app(row)

            category = category_for_bundle(bundle_id)
            try:
                conn.execute(
                    "INSERT INTO apps (bundle_id, name, category, is_distraction, first_seen) "
                    "VALUES (?, ?, ?, 0, ?)",
                    (bundle_id, name, category.value, time.time()),
                )
                logger.info("Registered app %s (%s) as %s", bundle_id, name, category.value)
            except sqlite3.IntegrityError:
                logger.debug("Concurrent insert for %s; reading existing row", bundle_id)

            row = conn.execute(
                "SELECT * FROM apps WHERE bundle_id = ?", (bundle_id,)
            ).fetchone()
            return self._row_to_app(row)

    # ── Lookups ─────────────────────────────────────────────────────────────

    def get(self, app_id: int) -> Optional[App]:
        with self.db.read() as conn:
            row = conn.execute("SELECT * FROM apps WHERE id = ?", (app_id,)).fetchone()
        return self._row_to_app(row) if row else None

    def get_by_bundle_id(self, bundle_id: str) -> Optional[App]:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM apps WHERE bundle_id = ?", (bundle_id,)
            ).fetchone()
        return self._row_to_app(row) if row else None

    def list_apps(self) -> List[App]:
        with self.db.read() as conn:
            rows = conn.execute("SELECT * FROM apps ORDER BY name, id").fetchall()
        return [self._row_to_app(r) for r in rows]

    def distraction_apps(self) -> List[App]:
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM apps WHERE is_distraction = 1 ORDER BY name, id"
            ).fetchall()
        return [self._row_to_app(r) for r in rows]

    # ── User overrides ──────────────────────────────────────────────────────

    def update_category(self, app_id: int, category: AppCategory) -> bool:
        """Override the category of one app. Returns False for an unknown id."""
        with self.db.write() as conn:
            cur = conn.execute(
                "UPDATE apps SET category = ? WHERE id = ?",
                (AppCategory(category).value, app_id),
            )
        return cur.rowcount > 0

    def update_category_for_bundle(self, bundle_id: str, category: AppCategory) -> bool:
        with self.db.write() as conn:
            cur = conn.execute(
                "UPDATE apps SET category = ? WHERE bundle_id = ?",
                (AppCategory(category).value, bundle_id),
            )
        return cur.rowcount > 0

    def set_distraction(self, app_id: int, is_distraction: bool) -> bool:
        with self.db.write() as conn:
            cur = conn.execute(
                "UPDATE apps SET is_distraction = ? WHERE id = ?",
                (1 if is_distraction else 0, app_id),
            )
        return cur.rowcount > 0

    # ── Usage queries ───────────────────────────────────────────────────────

    def top_apps(self, start: int, end: int, limit: int = 10) -> List[AppUsage]:
        """
        Apps ranked by active seconds in [start, end), ties by app id.

        percentage is each app's share of all active time in the range,
        not just of the returned rows.
        """
        if start > end or limit <= 0:
            return []
        with self.db.read() as conn:
            rows = conn.execute(
                """
                SELECT
                    a.id AS app_id, a.bundle_id, a.name, a.category,
                    SUM(m.active_seconds) AS total_seconds,
                    SUM(m.keystrokes)     AS keystrokes,
                    SUM(m.clicks)         AS clicks
                FROM minute_counters m
                JOIN apps a ON a.id = m.app_id
                WHERE m.timestamp >= ? AND m.timestamp < ?
                GROUP BY a.id
                ORDER BY total_seconds DESC, a.id ASC
                LIMIT ?
                """,
                (start, end, limit),
            ).fetchall()
            range_total = conn.execute(
                "SELECT COALESCE(SUM(active_seconds), 0) FROM minute_counters "
                "WHERE timestamp >= ? AND timestamp < ?",
                (start, end),
            ).fetchone()[0]

        usages = [
            AppUsage(
                app_id=r["app_id"], bundle_id=r["bundle_id"], name=r["name"],
                category=self._parse_category(r["category"]),
                total_seconds=r["total_seconds"] or 0,
                keystrokes=r["keystrokes"] or 0,
                clicks=r["clicks"] or 0,
            )
            for r in rows
        ]
        if range_total > 0:
            for u in usages:
                u.percentage = u.total_seconds / range_total * 100
        return usages

    def usage(self, app_id: int, start: int, end: int) -> List[MinuteCounter]:
        """Minute rows of one app over [start, end), ordered by time."""
        if start > end:
            return []
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM minute_counters WHERE app_id = ? "
                "AND timestamp >= ? AND timestamp < ? ORDER BY timestamp",
                (app_id, start, end),
            ).fetchall()
        return [
            MinuteCounter(
                timestamp=r["timestamp"], app_id=r["app_id"],
                keystrokes=r["keystrokes"], clicks=r["clicks"],
                scroll_distance=r["scroll_distance"],
                pointer_distance=r["pointer_distance"],
                active_seconds=r["active_seconds"],
                idle_seconds=r["idle_seconds"],
            )
            for r in rows
        ]

    # ── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _parse_category(value: str) -> AppCategory:
        try:
            return AppCategory(value)
        except ValueError:
            logger.warning("Unknown category '%s' in store; treating as other", value)
            return AppCategory.OTHER

    @classmethod
    def _row_to_app(cls, row: sqlite3.Row) -> App:
        return App(
            id=row["id"],
            bundle_id=row["bundle_id"],
            name=row["name"],
            category=cls._parse_category(row["category"]),
            is_distraction=bool(row["is_distraction"]),
            first_seen=datetime.fromtimestamp(row["first_seen"]),
        )

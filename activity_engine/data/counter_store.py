"""
Counter Store — per-minute, per-application usage counters.

Rows are keyed by (minute, app_id) and only ever grow: every write is an
additive merge performed by SQLite's native UPSERT inside a serialized write
transaction, so concurrent merges to the same key never lose increments.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import numpy as np

from activity_engine.data.database import Database
from activity_engine.data.dates import align_to_minute
from activity_engine.data.models import (
    COUNTER_FIELDS,
    CounterDeltas,
    CounterTotals,
    MinuteCounter,
)

logger = logging.getLogger(__name__)

MERGE_SQL = """
    INSERT INTO minute_counters (
        timestamp, app_id, keystrokes, clicks, scroll_distance,
        pointer_distance, active_seconds, idle_seconds
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(timestamp, app_id) DO UPDATE SET
        keystrokes       = keystrokes       + excluded.keystrokes,
        clicks           = clicks           + excluded.clicks,
        scroll_distance  = scroll_distance  + excluded.scroll_distance,
        pointer_distance = pointer_distance + excluded.pointer_distance,
        active_seconds   = active_seconds   + excluded.active_seconds,
        idle_seconds     = idle_seconds     + excluded.idle_seconds
"""

HOURLY_METRICS = ("active_seconds", "keystrokes", "clicks")


class CounterStore:
    """Data-access layer for the minute_counters table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ── Writes ──────────────────────────────────────────────────────────────

    def merge(self, minute: int, app_id: int, deltas: CounterDeltas) -> None:
        """Add deltas to the (minute, app_id) row, creating it if absent."""
        with self.db.write() as conn:
            conn.execute(MERGE_SQL, (align_to_minute(minute), app_id) + deltas.as_tuple())

    def merge_many(self, entries: Iterable[Tuple[int, int, CounterDeltas]]) -> int:
        """Merge a batch of (minute, app_id, deltas) in a single transaction."""
        params = [
            (align_to_minute(minute), app_id) + deltas.as_tuple()
            for minute, app_id, deltas in entries
        ]
        if not params:
            return 0
        with self.db.write() as conn:
            conn.executemany(MERGE_SQL, params)
        logger.debug("Merged %d counter rows", len(params))
        return len(params)

    # ── Queries ─────────────────────────────────────────────────────────────

    def get(self, minute: int, app_id: int) -> Optional[MinuteCounter]:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT * FROM minute_counters WHERE timestamp = ? AND app_id = ?",
                (align_to_minute(minute), app_id),
            ).fetchone()
        return self._row_to_counter(row) if row else None

    def totals(
        self,
        start: int,
        end: int,
        app_id: Optional[int] = None,
        inclusive_end: bool = False,
    ) -> CounterTotals:
        """
        Sum counters for minutes in [start, end) (or [start, end] when
        inclusive_end), optionally for one app. start > end gives zero totals.
        """
        if start > end:
            return CounterTotals()
        sums = ", ".join(f"COALESCE(SUM({f}), 0) AS {f}" for f in COUNTER_FIELDS)
        query = (
            f"SELECT {sums}, MIN(timestamp) AS first_ts, MAX(timestamp) AS last_ts "
            f"FROM minute_counters WHERE timestamp >= ? AND timestamp {'<=' if inclusive_end else '<'} ?"
        )
        params: list = [start, end]
        if app_id is not None:
            query += " AND app_id = ?"
            params.append(app_id)

        with self.db.read() as conn:
            row = conn.execute(query, params).fetchone()
        return CounterTotals(
            **{f: row[f] for f in COUNTER_FIELDS},
            first_timestamp=row["first_ts"],
            last_timestamp=row["last_ts"],
        )

    def minute_rows(
        self, start: int, end: int, app_id: Optional[int] = None
    ) -> List[MinuteCounter]:
        """Rows with minute in [start, end), ordered by timestamp then app."""
        if start > end:
            return []
        query = "SELECT * FROM minute_counters WHERE timestamp >= ? AND timestamp < ?"
        params: list = [start, end]
        if app_id is not None:
            query += " AND app_id = ?"
            params.append(app_id)
        query += " ORDER BY timestamp, app_id"

        with self.db.read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_counter(r) for r in rows]

    def has_activity(self, start: int, end: int) -> bool:
        if start > end:
            return False
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT 1 FROM minute_counters WHERE timestamp >= ? AND timestamp < ? LIMIT 1",
                (start, end),
            ).fetchone()
        return row is not None

    def earliest_timestamp(self) -> Optional[int]:
        """Oldest retained minute, or None for an empty store."""
        with self.db.read() as conn:
            row = conn.execute("SELECT MIN(timestamp) FROM minute_counters").fetchone()
        return row[0]

    def unique_app_count(self, start: int, end: int) -> int:
        if start > end:
            return 0
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT COUNT(DISTINCT app_id) FROM minute_counters "
                "WHERE timestamp >= ? AND timestamp < ?",
                (start, end),
            ).fetchone()
        return row[0]

    # ── Histograms ──────────────────────────────────────────────────────────

    def hourly_breakdown(
        self, start: int, end: int, metric: str = "active_seconds"
    ) -> List[int]:
        """
        24 buckets of `metric` by local hour of day over [start, end).

        Hours are taken from local wall-clock time of each minute, so ranges
        spanning several days fold onto the same 0-23 axis.
        """
        if metric not in HOURLY_METRICS:
            raise ValueError(f"Unsupported metric '{metric}'")
        if start > end:
            return [0] * 24
        with self.db.read() as conn:
            rows = conn.execute(
                f"SELECT timestamp, SUM({metric}) AS total FROM minute_counters "
                "WHERE timestamp >= ? AND timestamp < ? GROUP BY timestamp",
                (start, end),
            ).fetchall()
        if not rows:
            return [0] * 24

        hours = np.fromiter(
            (datetime.fromtimestamp(r["timestamp"]).hour for r in rows),
            dtype=np.int64, count=len(rows),
        )
        weights = np.fromiter((r["total"] for r in rows), dtype=np.int64, count=len(rows))
        buckets = np.zeros(24, dtype=np.int64)
        np.add.at(buckets, hours, weights)
        return [int(v) for v in buckets]

    def productivity_heatmap(self, start: int, end: int) -> List[List[int]]:
        """Active seconds as a [weekday][hour] grid, weekday 0 = Sunday."""
        grid = np.zeros((7, 24), dtype=np.int64)
        if start <= end:
            with self.db.read() as conn:
                rows = conn.execute(
                    "SELECT timestamp, SUM(active_seconds) AS total FROM minute_counters "
                    "WHERE timestamp >= ? AND timestamp < ? GROUP BY timestamp",
                    (start, end),
                ).fetchall()
            for r in rows:
                local = datetime.fromtimestamp(r["timestamp"])
                grid[(local.weekday() + 1) % 7, local.hour] += r["total"]
        return grid.tolist()

    # ── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_counter(row) -> MinuteCounter:
        return MinuteCounter(
            timestamp=row["timestamp"],
            app_id=row["app_id"],
            **{f: row[f] for f in COUNTER_FIELDS},
        )


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------
# What this file does:
#   Owns the minute_counters table: the additive merge on the write side and
#   range sums / ordered rows / histograms on the read side.
#
# Key methods:
#   - merge(): single INSERT ... ON CONFLICT DO UPDATE, so "read current row"
#     and "write updated row" are one statement inside one transaction.
#   - totals(): COALESCE(SUM(...), 0) so empty ranges sum to zero.
#   - hourly_breakdown(): numpy bincount-style accumulation over local hours.
#
# Data flow:
#   IngestService.record() → CounterStore.merge() → minute_counters
#   RollupService / SessionService / AchievementService → totals(), etc.

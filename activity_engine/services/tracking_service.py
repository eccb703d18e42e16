"""
Tracking Service — runs the periodic rollup and achievement check cycle.

Every tick evaluates the achievement catalog, which refreshes today's
rollup first; after the date rolls over the previous day is aggregated one
last time. A tick that fails on the store is logged and retried on the next
tick.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, List, Optional

from PySide6.QtCore import QTimer

from activity_engine.config import DEFAULT_CHECK_INTERVAL_MIN
from activity_engine.errors import StoreUnavailableError
from activity_engine.services.achievement_service import Achievement, AchievementService
from activity_engine.services.rollup_service import RollupService

logger = logging.getLogger(__name__)


class TrackingService:
    """
    Drives the background check cycle.

    Uses a QTimer so callbacks run on the Qt event loop of the thread that
    owns the service.
    """

    def __init__(
        self,
        rollups: RollupService,
        achievements: AchievementService,
        on_achievement_unlocked: Optional[Callable[[Achievement], None]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.rollups = rollups
        self.achievements = achievements
        self.on_achievement_unlocked = on_achievement_unlocked
        self.clock = clock

        self.check_interval = DEFAULT_CHECK_INTERVAL_MIN
        self.last_run_date: Optional[date] = None
        self.failed_ticks = 0

        self._timer = QTimer()
        self._timer.timeout.connect(self.run_check_cycle)

    # ── Public API ──────────────────────────────────────────────────────────

    def start(self, interval_min: Optional[float] = None) -> None:
        """Begin periodic checks; the first one runs immediately."""
        if interval_min is not None:
            self.check_interval = interval_min
        self._timer.start(int(self.check_interval * 60 * 1000))
        logger.info("Check cycle started: every %.1f min", self.check_interval)
        self.run_check_cycle()

    def stop(self) -> None:
        self._timer.stop()
        logger.info("Check cycle stopped.")

    @property
    def is_running(self) -> bool:
        return self._timer.isActive()

    def update_interval(self, interval_min: float) -> None:
        self.check_interval = interval_min
        if self._timer.isActive():
            self._timer.start(int(interval_min * 60 * 1000))

    # ── Timer callback ──────────────────────────────────────────────────────

    def run_check_cycle(self) -> List[Achievement]:
        """One tick. Returns achievements unlocked by it."""
        today = self.clock().date()
        try:
            if self.last_run_date is not None and self.last_run_date < today:
                # finalize the day we last saw before moving on
                self.rollups.aggregate(self.last_run_date)
            unlocked = self.achievements.check_all()
        except StoreUnavailableError:
            self.failed_ticks += 1
            logger.warning("Check cycle failed (%d so far); retrying next tick",
                           self.failed_ticks, exc_info=True)
            return []

        self.last_run_date = today
        for achievement in unlocked:
            logger.info("Newly earned: %s", achievement.name)
            if self.on_achievement_unlocked:
                self.on_achievement_unlocked(achievement)
        return unlocked

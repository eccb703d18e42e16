"""
Achievement Service — evaluates the fixed achievement catalog.

Each catalog entry carries one threshold requirement. check_all() evaluates
every entry not yet earned and records first-time unlocks. Earned rows are
append-only: nothing ever removes one, and an entry is reported as newly
earned by exactly one check_all() call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from activity_engine.config import STREAK_LOOKBACK_DAYS
from activity_engine.data.counter_store import CounterStore
from activity_engine.data.database import Database
from activity_engine.data.dates import day_bounds
from activity_engine.data.models import EarnedAchievement
from activity_engine.errors import StoreUnavailableError
from activity_engine.services.rollup_service import RollupService
from activity_engine.services.session_service import SessionService

logger = logging.getLogger(__name__)


class AchievementCategory(str, Enum):
    FOCUS = "Focus"
    PRODUCTIVITY = "Productivity"
    CONSISTENCY = "Consistency"
    INPUT = "Input"


class RequirementKind(str, Enum):
    FOCUS_SESSIONS = "focus_sessions"        # closed session count
    FOCUS_MINUTES = "focus_minutes"          # longest single session
    DEEP_WORK_SESSIONS = "deep_work_sessions"
    ACTIVE_MINUTES = "active_minutes"        # today
    KEYSTROKES = "keystrokes"                # today
    CLICKS = "clicks"                        # today
    CONSECUTIVE_DAYS = "consecutive_days"
    EARLY_START = "early_start"              # activity before `hour` on `threshold` days
    LATE_NIGHT = "late_night"                # activity at/after `hour` on `threshold` days


@dataclass(frozen=True)
class Requirement:
    kind: RequirementKind
    threshold: int
    hour: Optional[int] = None


@dataclass(frozen=True)
class Achievement:
    """Catalog entry."""
    id: str
    name: str
    description: str
    icon: str
    category: AchievementCategory
    requirement: Requirement


ACHIEVEMENTS: Tuple[Achievement, ...] = (
    # ── Focus ──
    Achievement("first_focus", "First Focus", "Complete your first focus session",
                "target", AchievementCategory.FOCUS,
                Requirement(RequirementKind.FOCUS_SESSIONS, 1)),
    Achievement("flow_state", "Flow State", "Complete a 25+ minute focus session",
                "flame.fill", AchievementCategory.FOCUS,
                Requirement(RequirementKind.FOCUS_MINUTES, 25)),
    Achievement("deep_diver", "Deep Diver", "Complete 5 deep work sessions",
                "water.waves", AchievementCategory.FOCUS,
                Requirement(RequirementKind.DEEP_WORK_SESSIONS, 5)),
    Achievement("marathon", "Marathon", "Complete a 2-hour focus session",
                "figure.run", AchievementCategory.FOCUS,
                Requirement(RequirementKind.FOCUS_MINUTES, 120)),
    # ── Productivity ──
    Achievement("early_bird", "Early Bird", "Start working before 7 AM (5 times)",
                "sunrise.fill", AchievementCategory.PRODUCTIVITY,
                Requirement(RequirementKind.EARLY_START, 5, hour=7)),
    Achievement("night_owl", "Night Owl", "Work past 10 PM (5 times)",
                "moon.stars.fill", AchievementCategory.PRODUCTIVITY,
                Requirement(RequirementKind.LATE_NIGHT, 5, hour=22)),
    Achievement("productive_day", "Productive Day", "Log 4+ hours of active time in a day",
                "chart.bar.fill", AchievementCategory.PRODUCTIVITY,
                Requirement(RequirementKind.ACTIVE_MINUTES, 240)),
    # ── Input ──
    Achievement("keyboard_warrior", "Keyboard Warrior", "Type 10,000 keystrokes in a day",
                "keyboard.fill", AchievementCategory.INPUT,
                Requirement(RequirementKind.KEYSTROKES, 10_000)),
    Achievement("click_master", "Click Master", "Click 5,000 times in a day",
                "cursorarrow.click.2", AchievementCategory.INPUT,
                Requirement(RequirementKind.CLICKS, 5_000)),
    Achievement("speed_typist", "Speed Typist", "Type 50,000 keystrokes in a day",
                "bolt.fill", AchievementCategory.INPUT,
                Requirement(RequirementKind.KEYSTROKES, 50_000)),
    # ── Consistency ──
    Achievement("streak_starter", "Streak Starter", "Stay active 3 days in a row",
                "flame", AchievementCategory.CONSISTENCY,
                Requirement(RequirementKind.CONSECUTIVE_DAYS, 3)),
    Achievement("committed", "Committed", "Stay active 7 days in a row",
                "flame.fill", AchievementCategory.CONSISTENCY,
                Requirement(RequirementKind.CONSECUTIVE_DAYS, 7)),
    Achievement("dedicated", "Dedicated", "Stay active 30 days in a row",
                "star.fill", AchievementCategory.CONSISTENCY,
                Requirement(RequirementKind.CONSECUTIVE_DAYS, 30)),
)

_BY_ID: Dict[str, Achievement] = {a.id: a for a in ACHIEVEMENTS}


def get_achievement(achievement_id: str) -> Optional[Achievement]:
    return _BY_ID.get(achievement_id)


@dataclass
class AchievementStatus:
    achievement: Achievement
    earned: bool
    earned_at: Optional[datetime] = None


class AchievementService:
    """Evaluates ACHIEVEMENTS against sessions, counters and rollups."""

    def __init__(
        self,
        db: Database,
        counters: CounterStore,
        sessions: SessionService,
        rollups: RollupService,
        clock: Callable[[], datetime] = datetime.now,
        catalog: Tuple[Achievement, ...] = ACHIEVEMENTS,
        lookback_days: int = STREAK_LOOKBACK_DAYS,
    ) -> None:
        self.db = db
        self.counters = counters
        self.sessions = sessions
        self.rollups = rollups
        self.clock = clock
        self.catalog = catalog
        self.lookback_days = lookback_days

    # ── Public API ──────────────────────────────────────────────────────────

    def check_all(self) -> List[Achievement]:
        """
        Evaluate every unearned achievement and record new unlocks.

        Returns the achievements unlocked by this call. Today's rollup is
        refreshed first; if that fails the check still runs on whatever
        rollups are stored.
        """
        today = self.clock().date()
        try:
            self.rollups.aggregate(today)
        except StoreUnavailableError:
            logger.warning("Could not refresh rollup for %s before achievement check",
                           today, exc_info=True)

        unlocked: List[Achievement] = []
        for achievement in self.catalog:
            if self.has_earned(achievement.id):
                continue
            if not self.is_satisfied(achievement.requirement):
                continue
            if self._award(achievement):
                unlocked.append(achievement)
        return unlocked

    def has_earned(self, achievement_id: str) -> bool:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT 1 FROM earned_achievements WHERE achievement_id = ?",
                (achievement_id,),
            ).fetchone()
        return row is not None

    def earned(self) -> List[EarnedAchievement]:
        """Earned rows, newest first."""
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM earned_achievements ORDER BY earned_at DESC, achievement_id"
            ).fetchall()
        return [
            EarnedAchievement(achievement_id=r["achievement_id"],
                              earned_at=datetime.fromtimestamp(r["earned_at"]))
            for r in rows
        ]

    def all_with_status(self) -> List[AchievementStatus]:
        earned = {e.achievement_id: e.earned_at for e in self.earned()}
        return [
            AchievementStatus(a, a.id in earned, earned.get(a.id))
            for a in self.catalog
        ]

    @property
    def earned_count(self) -> int:
        return len(self.earned())

    @property
    def total_count(self) -> int:
        return len(self.catalog)

    # ── Requirement evaluation ──────────────────────────────────────────────

    def is_satisfied(self, requirement: Requirement) -> bool:
        return self.progress(requirement) >= requirement.threshold

    def progress(self, requirement: Requirement) -> int:
        """Current value of the quantity a requirement is measured on."""
        kind = requirement.kind
        if kind == RequirementKind.FOCUS_SESSIONS:
            return self.sessions.closed_count()
        if kind == RequirementKind.FOCUS_MINUTES:
            return self.sessions.longest_session_minutes()
        if kind == RequirementKind.DEEP_WORK_SESSIONS:
            return self.sessions.deep_work_count()
        if kind == RequirementKind.ACTIVE_MINUTES:
            return self._today_totals().active_seconds // 60
        if kind == RequirementKind.KEYSTROKES:
            return self._today_totals().keystrokes
        if kind == RequirementKind.CLICKS:
            return self._today_totals().clicks
        if kind == RequirementKind.CONSECUTIVE_DAYS:
            return self.consecutive_days()
        if kind == RequirementKind.EARLY_START:
            return self.early_start_count(requirement.hour)
        if kind == RequirementKind.LATE_NIGHT:
            return self.late_night_count(requirement.hour)
        raise ValueError(f"Unknown requirement kind {kind!r}")

    def consecutive_days(self) -> int:
        """
        Active local-calendar days in a row, counting back from today.

        Raw minute counters decide whether a day had activity. A stored
        rollup is only consulted for days older than the earliest retained
        counter, i.e. days whose counters have been pruned.
        """
        today = self.clock().date()
        earliest = self.counters.earliest_timestamp()
        oldest = today - timedelta(days=self.lookback_days - 1)
        cached = {r.date: r.total_active_seconds
                  for r in self.rollups.list_rollups(oldest, today)}

        streak = 0
        day = today
        for _ in range(self.lookback_days):
            start, end = day_bounds(day)
            if earliest is not None and end > earliest:
                active = self.counters.has_activity(start, end)
            else:
                active = cached.get(day.isoformat(), 0) > 0
            if not active:
                break
            streak += 1
            day -= timedelta(days=1)
        return streak

    def early_start_count(self, before_hour: int) -> int:
        """Distinct days whose first activity fell before before_hour (local)."""
        return sum(
            1 for r in self.rollups.all_rollups()
            if r.first_activity is not None and r.first_activity.hour < before_hour
        )

    def late_night_count(self, from_hour: int) -> int:
        """Distinct days whose last activity fell at/after from_hour (local)."""
        return sum(
            1 for r in self.rollups.all_rollups()
            if r.last_activity is not None and r.last_activity.hour >= from_hour
        )

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _today_totals(self):
        start, end = day_bounds(self.clock())
        return self.counters.totals(start, end)

    def _award(self, achievement: Achievement) -> bool:
        """Insert the earned row; True only if this call created it."""
        with self.db.write() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO earned_achievements (achievement_id, earned_at) "
                "VALUES (?, ?)",
                (achievement.id, self.clock().timestamp()),
            )
        if cur.rowcount == 1:
            logger.info("Achievement unlocked: %s", achievement.id)
            return True
        return False

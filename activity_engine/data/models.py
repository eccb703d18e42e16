"""
Data models for the activity engine.

These are plain dataclasses that represent database rows and query results.
Relationships between rows are integer keys resolved by lookup, never nested
objects.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from activity_engine.config import DEEP_WORK_MAX_INTERRUPTIONS, DEEP_WORK_MIN_SECONDS


class AppCategory(str, Enum):
    """User-assignable application category."""
    DEVELOPMENT = "development"
    COMMUNICATION = "communication"
    PRODUCTIVITY = "productivity"
    ENTERTAINMENT = "entertainment"
    UTILITIES = "utilities"
    BROWSERS = "browsers"
    DESIGN = "design"
    WRITING = "writing"
    FINANCE = "finance"
    EDUCATION = "education"
    SOCIAL = "social"
    MUSIC = "music"
    VIDEO = "video"
    GAMING = "gaming"
    OTHER = "other"


@dataclass
class App:
    """A tracked application, keyed by its platform bundle identifier."""
    id: Optional[int] = None
    bundle_id: str = ""
    name: str = ""
    category: AppCategory = AppCategory.OTHER
    is_distraction: bool = False
    first_seen: Optional[datetime] = None


COUNTER_FIELDS: Tuple[str, ...] = (
    "keystrokes",
    "clicks",
    "scroll_distance",
    "pointer_distance",
    "active_seconds",
    "idle_seconds",
)


@dataclass
class CounterDeltas:
    """
    Additive increments for one minute/app counter row.

    All values are expected to be non-negative; the capture source is trusted
    on this and nothing here validates it.
    """
    keystrokes: int = 0
    clicks: int = 0
    scroll_distance: int = 0
    pointer_distance: int = 0
    active_seconds: int = 0
    idle_seconds: int = 0

    def as_tuple(self) -> Tuple[int, ...]:
        return tuple(getattr(self, f) for f in COUNTER_FIELDS)


@dataclass
class MinuteCounter:
    """Usage counters for a single (minute, app) pair."""
    timestamp: int = 0  # Unix seconds on a minute boundary
    app_id: int = 0
    keystrokes: int = 0
    clicks: int = 0
    scroll_distance: int = 0
    pointer_distance: int = 0
    active_seconds: int = 0
    idle_seconds: int = 0

    @property
    def minute(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp)


@dataclass
class CounterTotals:
    """Summed counters over a time range."""
    keystrokes: int = 0
    clicks: int = 0
    scroll_distance: int = 0
    pointer_distance: int = 0
    active_seconds: int = 0
    idle_seconds: int = 0
    first_timestamp: Optional[int] = None
    last_timestamp: Optional[int] = None


@dataclass
class AppUsage:
    """Per-app totals over a range, joined with the app's identity."""
    app_id: int
    bundle_id: str
    name: str
    category: AppCategory
    total_seconds: int = 0
    keystrokes: int = 0
    clicks: int = 0
    percentage: float = 0.0


@dataclass
class FocusSession:
    """One deep-work interval. end_time is None while the session is open."""
    id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    primary_app_id: Optional[int] = None
    keystrokes: int = 0
    clicks: int = 0
    interruptions: int = 0

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.end_time is None or self.start_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds())

    @property
    def is_deep_work(self) -> bool:
        seconds = self.duration_seconds
        if seconds is None:
            return False
        return (seconds >= DEEP_WORK_MIN_SECONDS
                and self.interruptions < DEEP_WORK_MAX_INTERRUPTIONS)


@dataclass
class AppUsageSummary:
    """Entry of a rollup's top-apps payload."""
    app_id: int
    bundle_id: str
    name: str
    seconds: int
    keystrokes: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DailyRollup:
    """
    Full-day summary for one local calendar date.

    The row is always recomputed as a whole; top_apps_json and
    hourly_breakdown_json are canonical JSON so that recomputing an unchanged
    day produces identical values.
    """
    date: str = ""  # YYYY-MM-DD, local timezone
    total_active_seconds: int = 0
    total_focus_seconds: int = 0
    first_activity: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    total_keystrokes: int = 0
    total_clicks: int = 0
    total_scroll: int = 0
    focus_score: float = 0.0
    productivity_score: float = 0.0
    top_apps_json: str = "[]"
    hourly_breakdown_json: str = "{}"

    @property
    def top_apps(self) -> List[AppUsageSummary]:
        try:
            items = json.loads(self.top_apps_json or "[]")
            return [AppUsageSummary(**item) for item in items]
        except (ValueError, TypeError):
            return []

    @property
    def hourly_breakdown(self) -> Dict[int, int]:
        try:
            raw = json.loads(self.hourly_breakdown_json or "{}")
            return {int(hour): int(seconds) for hour, seconds in raw.items()}
        except (ValueError, TypeError, AttributeError):
            return {}


@dataclass
class PeriodStats:
    """Aggregated stats for an arbitrary time range."""
    active_seconds: int = 0
    keystrokes: int = 0
    clicks: int = 0
    scroll_distance: int = 0
    focus_sessions: int = 0
    unique_apps: int = 0


@dataclass
class EarnedAchievement:
    """First-time unlock of a catalog achievement. Append-only."""
    achievement_id: str = ""
    earned_at: Optional[datetime] = None


@dataclass
class RawEvent:
    """
    An auxiliary payload row.

    event_type is one of:
        'clickPositions', 'keycodeFrequency', 'contextSwitch', 'meeting'
    """
    id: Optional[int] = None
    timestamp: Optional[datetime] = None
    event_type: str = ""
    data: Union[bytes, str] = field(default=b"", repr=False)  # as stored; TEXT rows stay str

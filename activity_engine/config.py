"""Configuration defaults and runtime settings for the engine."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

# Default DB lives next to the repo root
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "activity_engine.db"

# Check cycle (minutes) for the background rollup / achievement pass
DEFAULT_CHECK_INTERVAL_MIN = 5

# Result caps
DEFAULT_SAMPLE_LIMIT = 50_000
TOP_APPS_LIMIT = 5

STREAK_LOOKBACK_DAYS = 365

# Deep work: at least this long with fewer than this many interruptions
DEEP_WORK_MIN_SECONDS = 25 * 60
DEEP_WORK_MAX_INTERRUPTIONS = 3

# Seconds SQLite waits on a locked database before raising
BUSY_TIMEOUT_SECONDS = 5.0


@dataclass
class EngineSettings:
    """Runtime configuration for the engine and its background runner."""

    db_path: Path = DEFAULT_DB_PATH
    check_interval_min: float = DEFAULT_CHECK_INTERVAL_MIN
    sample_limit: int = DEFAULT_SAMPLE_LIMIT
    top_apps_limit: int = TOP_APPS_LIMIT
    streak_lookback_days: int = STREAK_LOOKBACK_DAYS
    log_file: str = "activity_engine.log"

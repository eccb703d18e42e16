from .achievement_service import ACHIEVEMENTS, AchievementService
from .ingest_service import CaptureSample, IngestService
from .rollup_service import RollupService
from .session_service import SessionService, SessionState

__all__ = [
    "ACHIEVEMENTS", "AchievementService", "CaptureSample", "IngestService",
    "RollupService", "SessionService", "SessionState",
]

"""Wires every component around one Database handle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from activity_engine.config import EngineSettings
from activity_engine.data.app_registry import AppRegistry
from activity_engine.data.counter_store import CounterStore
from activity_engine.data.database import Database
from activity_engine.data.sample_store import SampleStore
from activity_engine.services.achievement_service import AchievementService
from activity_engine.services.ingest_service import IngestService
from activity_engine.services.rollup_service import RollupService
from activity_engine.services.session_service import SessionService


@dataclass
class Engine:
    db: Database
    counters: CounterStore
    registry: AppRegistry
    samples: SampleStore
    sessions: SessionService
    rollups: RollupService
    achievements: AchievementService
    ingest: IngestService

    def close(self) -> None:
        self.db.close()


def build_engine(
    db: Database,
    settings: Optional[EngineSettings] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Engine:
    """Connect db and construct each component with it."""
    settings = settings or EngineSettings()
    db.connect()
    counters = CounterStore(db)
    registry = AppRegistry(db)
    samples = SampleStore(db, default_limit=settings.sample_limit)
    sessions = SessionService(db, counters, clock=clock)
    rollups = RollupService(db, counters, registry, sessions,
                            top_apps_limit=settings.top_apps_limit)
    achievements = AchievementService(db, counters, sessions, rollups, clock=clock,
                                      lookback_days=settings.streak_lookback_days)
    ingest = IngestService(db, registry, counters, samples)
    return Engine(db, counters, registry, samples, sessions, rollups,
                  achievements, ingest)

from .app_registry import AppRegistry
from .counter_store import CounterStore
from .database import Database
from .models import App, AppCategory, CounterDeltas, DailyRollup, FocusSession, MinuteCounter
from .sample_store import SampleStore

__all__ = [
    "App", "AppCategory", "AppRegistry", "CounterDeltas", "CounterStore",
    "DailyRollup", "Database", "FocusSession", "MinuteCounter", "SampleStore",
]

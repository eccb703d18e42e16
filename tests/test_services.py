"""Unit tests for the service layer (sessions, rollups, ingest)."""

import json
import pytest
from datetime import date, datetime, time, timedelta
from pathlib import Path
import sys
import threading

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from activity_engine.config import EngineSettings
from activity_engine.data.dates import day_bounds
from activity_engine.data.database import Database
from activity_engine.data.models import CounterDeltas
from activity_engine.data.sample_store import CONTEXT_SWITCH
from activity_engine.engine import build_engine
from activity_engine.services.ingest_service import CaptureSample
from activity_engine.services.session_service import SessionState

DAY = date(2024, 6, 12)
NEXT_DAY = DAY + timedelta(days=1)


def at(hour, minute=0, day=DAY):
    return datetime.combine(day, time(hour, minute))


def ts(hour, minute=0, day=DAY):
    return int(at(hour, minute, day).timestamp())


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(at(9))


@pytest.fixture
def engine(clock):
    eng = build_engine(Database(db_path=Path(":memory:")), clock=clock)
    yield eng
    eng.close()


@pytest.fixture
def apps(engine):
    a = engine.registry.find_or_create("com.example.editor", "Editor")
    b = engine.registry.find_or_create("com.example.chat", "Chat")
    return a.id, b.id


class TestSessionService:
    def test_start_opens_session(self, engine):
        session = engine.sessions.start()
        assert session.id is not None
        assert session.is_open
        assert engine.sessions.state == SessionState.OPEN

    def test_start_is_idempotent(self, engine):
        first = engine.sessions.start()
        second = engine.sessions.start()
        assert first.id == second.id
        assert len(engine.sessions.recent()) == 1

    def test_concurrent_start_opens_one_session(self, tmp_path, clock):
        eng = build_engine(Database(db_path=tmp_path / "engine.db"), clock=clock)
        ids = []
        lock = threading.Lock()

        def worker():
            session = eng.sessions.start()
            with lock:
                ids.append(session.id)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        try:
            # a thread that raised never appends
            assert len(ids) == 16
            assert len(set(ids)) == 1
            assert len(eng.sessions.recent(limit=50)) == 1
        finally:
            eng.close()

    def test_end_backfills_metrics(self, engine, clock, apps):
        editor, chat = apps
        engine.counters.merge(ts(8, 59), editor, CounterDeltas(keystrokes=100))
        engine.counters.merge(ts(9), editor, CounterDeltas(keystrokes=10, clicks=1))
        engine.counters.merge(ts(9, 10), editor, CounterDeltas(keystrokes=20, clicks=2))
        engine.counters.merge(ts(9, 26), editor, CounterDeltas(keystrokes=5))
        engine.counters.merge(ts(9, 10), chat, CounterDeltas(keystrokes=1000))

        session = engine.sessions.start(primary_app_id=editor)
        clock.advance(minutes=26)
        ended = engine.sessions.end(session.id)

        assert not ended.is_open
        assert ended.duration_seconds == 26 * 60
        # end minute inclusive, other apps excluded
        assert ended.keystrokes == 35
        assert ended.clicks == 3
        assert ended.is_deep_work
        assert engine.sessions.state == SessionState.CLOSED

    def test_end_without_primary_app_counts_all_apps(self, engine, clock, apps):
        editor, chat = apps
        engine.counters.merge(ts(9, 5), editor, CounterDeltas(keystrokes=10))
        engine.counters.merge(ts(9, 5), chat, CounterDeltas(keystrokes=4))
        session = engine.sessions.start()
        clock.advance(minutes=10)
        assert engine.sessions.end(session.id).keystrokes == 14

    def test_end_twice_returns_unchanged(self, engine, clock):
        session = engine.sessions.start()
        clock.advance(minutes=5)
        first = engine.sessions.end(session.id)
        clock.advance(minutes=30)
        second = engine.sessions.end(session.id)
        assert second.end_time == first.end_time

    def test_end_unknown_session(self, engine):
        assert engine.sessions.end(424242) is None

    def test_end_with_clock_behind_start(self, engine, clock):
        session = engine.sessions.start()
        clock.advance(minutes=-3)
        ended = engine.sessions.end(session.id)
        assert ended.end_time == ended.start_time
        assert ended.duration_seconds == 0

    def test_end_active(self, engine, clock):
        assert engine.sessions.end_active() is None
        engine.sessions.start()
        clock.advance(minutes=1)
        assert engine.sessions.end_active() is not None
        assert engine.sessions.active_session() is None

    def test_new_session_after_end(self, engine, clock):
        first = engine.sessions.start()
        clock.advance(minutes=1)
        engine.sessions.end(first.id)
        second = engine.sessions.start()
        assert second.id != first.id

    def test_interruptions_break_deep_work(self, engine, clock):
        assert engine.sessions.record_interruption() is None
        session = engine.sessions.start()
        for _ in range(3):
            engine.sessions.record_interruption()
        clock.advance(minutes=40)
        ended = engine.sessions.end(session.id)
        assert ended.interruptions == 3
        assert not ended.is_deep_work
        assert engine.sessions.deep_work_count() == 0

    def test_focus_seconds_split_across_midnight(self, engine, clock):
        clock.now = at(23, 30)
        session = engine.sessions.start()
        clock.now = at(0, 30, NEXT_DAY)
        engine.sessions.end(session.id)
        assert engine.sessions.focus_seconds(*day_bounds(DAY)) == 1800
        assert engine.sessions.focus_seconds(*day_bounds(NEXT_DAY)) == 1800

    def test_open_session_not_counted(self, engine):
        engine.sessions.start()
        assert engine.sessions.focus_seconds(*day_bounds(DAY)) == 0
        assert engine.sessions.closed_count() == 0

    def test_sessions_for_day(self, engine, clock):
        s = engine.sessions.start()
        clock.advance(minutes=5)
        engine.sessions.end(s.id)
        assert [x.id for x in engine.sessions.sessions_for_day(DAY)] == [s.id]
        assert engine.sessions.sessions_for_day(NEXT_DAY) == []

    def test_longest_session_minutes(self, engine, clock):
        for minutes in (10, 125, 30):
            s = engine.sessions.start()
            clock.advance(minutes=minutes)
            engine.sessions.end(s.id)
        assert engine.sessions.longest_session_minutes() == 125


class TestRollupService:
    def test_scenario_two_apps(self, engine, apps):
        editor, chat = apps
        engine.counters.merge(ts(9), editor, CounterDeltas(active_seconds=60, keystrokes=40))
        engine.counters.merge(ts(9, 1), chat, CounterDeltas(active_seconds=30, clicks=2))

        rollup = engine.rollups.aggregate(DAY)
        assert rollup.date == "2024-06-12"
        assert rollup.total_active_seconds == 90
        assert rollup.total_keystrokes == 40
        assert rollup.total_clicks == 2
        assert rollup.first_activity == at(9)
        assert rollup.last_activity == at(9, 1)
        assert rollup.top_apps[0].app_id == editor
        assert [a.seconds for a in rollup.top_apps] == [60, 30]
        assert rollup.hourly_breakdown_json == '{"9":90}'

    def test_empty_day(self, engine):
        rollup = engine.rollups.aggregate(DAY)
        assert rollup.total_active_seconds == 0
        assert rollup.first_activity is None
        assert rollup.focus_score == 0
        assert rollup.productivity_score == 0
        assert rollup.top_apps_json == "[]"
        assert rollup.hourly_breakdown_json == "{}"

    def test_aggregate_is_idempotent(self, engine, clock, apps):
        editor, _ = apps
        engine.counters.merge(ts(9), editor, CounterDeltas(active_seconds=60))
        s = engine.sessions.start()
        clock.advance(minutes=30)
        engine.sessions.end(s.id)

        def stored_row():
            with engine.db.read() as conn:
                return tuple(conn.execute(
                    "SELECT * FROM daily_rollups WHERE date = ?", ("2024-06-12",)
                ).fetchone())

        engine.rollups.aggregate(DAY)
        first = stored_row()
        engine.rollups.aggregate(DAY)
        assert stored_row() == first

    def test_aggregate_replaces_row(self, engine, apps):
        editor, _ = apps
        engine.counters.merge(ts(9), editor, CounterDeltas(active_seconds=60))
        engine.rollups.aggregate(DAY)
        engine.counters.merge(ts(10), editor, CounterDeltas(active_seconds=60))
        engine.rollups.aggregate(DAY)
        assert engine.rollups.get_rollup(DAY).total_active_seconds == 120
        assert len(engine.rollups.all_rollups()) == 1

    def test_focus_score(self, engine, clock, apps):
        editor, _ = apps
        engine.counters.merge_many(
            (ts(9, m), editor, CounterDeltas(active_seconds=60)) for m in range(60)
        )
        s = engine.sessions.start()
        clock.advance(minutes=30)
        engine.sessions.end(s.id)
        rollup = engine.rollups.aggregate(DAY)
        assert rollup.total_focus_seconds == 1800
        assert rollup.focus_score == pytest.approx(50.0)

    def test_focus_score_capped(self, engine, clock, apps):
        editor, _ = apps
        engine.counters.merge(ts(9), editor, CounterDeltas(active_seconds=60))
        s = engine.sessions.start()
        clock.advance(hours=2)
        engine.sessions.end(s.id)
        assert engine.rollups.aggregate(DAY).focus_score == 100.0

    def test_productivity_score_excludes_distractions(self, engine, apps):
        editor, chat = apps
        engine.registry.set_distraction(chat, True)
        engine.counters.merge(ts(9), editor, CounterDeltas(active_seconds=60))
        engine.counters.merge(ts(9), chat, CounterDeltas(active_seconds=30))
        assert engine.rollups.aggregate(DAY).productivity_score == pytest.approx(200 / 3)

    def test_top_apps_limited_with_id_tiebreak(self, engine):
        ids = [engine.registry.find_or_create(f"com.example.app{i}", f"App {i}").id
               for i in range(7)]
        for app_id in reversed(ids):
            engine.counters.merge(ts(9), app_id, CounterDeltas(active_seconds=10))
        rollup = engine.rollups.aggregate(DAY)
        assert [a.app_id for a in rollup.top_apps] == ids[:5]

    def test_session_across_midnight_split(self, engine, clock):
        clock.now = at(23, 30)
        s = engine.sessions.start()
        clock.now = at(0, 30, NEXT_DAY)
        engine.sessions.end(s.id)
        assert engine.rollups.aggregate(DAY).total_focus_seconds == 1800
        assert engine.rollups.aggregate(NEXT_DAY).total_focus_seconds == 1800

    def test_open_session_excluded(self, engine, apps):
        editor, _ = apps
        engine.counters.merge(ts(9), editor, CounterDeltas(active_seconds=60))
        engine.sessions.start()
        assert engine.rollups.aggregate(DAY).total_focus_seconds == 0

    def test_activity_outside_day_excluded(self, engine, apps):
        editor, _ = apps
        engine.counters.merge(ts(23, 59), editor, CounterDeltas(active_seconds=60))
        engine.counters.merge(ts(0, 0, NEXT_DAY), editor, CounterDeltas(active_seconds=45))
        assert engine.rollups.aggregate(DAY).total_active_seconds == 60
        assert engine.rollups.aggregate(NEXT_DAY).total_active_seconds == 45

    def test_aggregate_range_and_listing(self, engine, apps):
        editor, _ = apps
        engine.counters.merge(ts(9, day=NEXT_DAY), editor, CounterDeltas(active_seconds=60))
        rollups = engine.rollups.aggregate_range(DAY, DAY + timedelta(days=2))
        assert [r.date for r in rollups] == ["2024-06-12", "2024-06-13", "2024-06-14"]
        listed = engine.rollups.list_rollups(DAY, NEXT_DAY)
        assert [r.total_active_seconds for r in listed] == [0, 60]
        assert engine.rollups.list_rollups(NEXT_DAY, DAY) == []

    def test_stored_rollup_round_trips(self, engine, apps):
        editor, _ = apps
        engine.counters.merge(ts(14, 15), editor, CounterDeltas(active_seconds=60))
        built = engine.rollups.aggregate(DAY)
        assert engine.rollups.get_rollup(DAY) == built
        assert engine.rollups.get_rollup(NEXT_DAY) is None

    def test_period_stats(self, engine, clock, apps):
        editor, chat = apps
        engine.counters.merge(ts(9), editor, CounterDeltas(active_seconds=60, keystrokes=5))
        engine.counters.merge(ts(10), chat, CounterDeltas(active_seconds=30, clicks=3))
        s = engine.sessions.start()
        clock.advance(minutes=10)
        engine.sessions.end(s.id)
        engine.sessions.start()

        stats = engine.rollups.period_stats(*day_bounds(DAY))
        assert stats.active_seconds == 90
        assert stats.keystrokes == 5
        assert stats.clicks == 3
        assert stats.focus_sessions == 1
        assert stats.unique_apps == 2
        assert engine.rollups.period_stats(ts(10), ts(9)).active_seconds == 0


class TestIngestService:
    def test_record_registers_and_merges(self, engine):
        sample = CaptureSample(at(9, 0) + timedelta(seconds=37), "com.example.editor", "Editor",
                               CounterDeltas(keystrokes=12, active_seconds=40))
        app_id = engine.ingest.record(sample)
        assert engine.registry.get(app_id).bundle_id == "com.example.editor"
        assert engine.counters.get(ts(9), app_id).keystrokes == 12

    def test_record_many_single_app(self, engine):
        samples = [
            CaptureSample(ts(9, m), "com.example.editor", "Editor", CounterDeltas(active_seconds=60))
            for m in range(5)
        ]
        assert engine.ingest.record_many(samples) == 5
        assert len(engine.registry.list_apps()) == 1
        assert engine.counters.totals(*day_bounds(DAY)).active_seconds == 300

    def test_failed_batch_leaves_nothing_behind(self, engine):
        bad = [
            CaptureSample(ts(9), "com.example.editor", "Editor", CounterDeltas(active_seconds=60)),
            CaptureSample(ts(9, 1), "com.example.editor", "Editor", None),
        ]
        with pytest.raises(AttributeError):
            engine.ingest.record_many(bad)
        assert engine.registry.get_by_bundle_id("com.example.editor") is None
        # the rolled-back id must not be reused from the cache
        app_id = engine.ingest.record(
            CaptureSample(ts(9), "com.example.editor", "Editor", CounterDeltas(clicks=1))
        )
        assert engine.registry.get(app_id) is not None

    def test_record_payload(self, engine):
        engine.ingest.record_payload(CONTEXT_SWITCH, json.dumps({"count": 7}).encode(), ts(9))
        assert engine.samples.context_switch_count(DAY) == 7


class TestEngine:
    def test_components_share_one_database(self, engine):
        assert engine.counters.db is engine.db
        assert engine.rollups.sessions is engine.sessions
        assert engine.achievements.rollups is engine.rollups

    def test_settings_flow_into_components(self):
        settings = EngineSettings(db_path=Path(":memory:"), sample_limit=10, top_apps_limit=2)
        eng = build_engine(Database(settings.db_path), settings)
        try:
            assert eng.samples.default_limit == 10
            assert eng.rollups.top_apps_limit == 2
        finally:
            eng.close()

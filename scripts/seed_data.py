"""
Seed Data Generator — fills the store with realistic fake activity.

Run: python scripts/seed_data.py [days]
"""

import json
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from activity_engine.data.database import Database
from activity_engine.data.models import CounterDeltas
from activity_engine.data.sample_store import CLICK_POSITIONS, CONTEXT_SWITCH, KEYCODE_FREQUENCY
from activity_engine.engine import build_engine
from activity_engine.services.ingest_service import CaptureSample

APPS = [
    ("com.microsoft.VSCode", "Visual Studio Code"),
    ("com.apple.Terminal", "Terminal"),
    ("com.google.Chrome", "Google Chrome"),
    ("com.tinyspeck.slackmacgap", "Slack"),
    ("notion.id", "Notion"),
    ("com.spotify.client", "Spotify"),
    ("com.reddit.Reddit", "Reddit"),
]


class SeedClock:
    """Clock the session service reads while we replay the past."""

    def __init__(self):
        self.now = datetime.now()

    def __call__(self):
        return self.now


def seed(num_days: int = 30) -> None:
    clock = SeedClock()
    engine = build_engine(Database(), clock=clock)

    today = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    first_day = today - timedelta(days=num_days)

    for offset in range(num_days):
        day = first_day + timedelta(days=offset)
        if random.random() < 0.15:
            continue  # day off

        # ── Minute counters ─────────────────────────────────────────────
        start = day + timedelta(hours=random.randint(6, 10), minutes=random.randint(0, 59))
        minutes = random.randint(180, 540)
        batch = []
        bundle_id, name = random.choice(APPS)
        for m in range(minutes):
            if random.random() < 0.1:
                bundle_id, name = random.choice(APPS)
            batch.append(CaptureSample(
                start + timedelta(minutes=m), bundle_id, name,
                CounterDeltas(
                    keystrokes=random.randint(0, 120),
                    clicks=random.randint(0, 20),
                    scroll_distance=random.randint(0, 400),
                    pointer_distance=random.randint(0, 3000),
                    active_seconds=random.randint(30, 60),
                    idle_seconds=random.randint(0, 10),
                ),
            ))
        engine.ingest.record_many(batch)

        # ── Focus sessions ──────────────────────────────────────────────
        cursor = start
        for _ in range(random.randint(0, 4)):
            cursor += timedelta(minutes=random.uniform(10, 60))
            clock.now = cursor
            session = engine.sessions.start()
            for _ in range(random.choice([0, 0, 1, 2, 4])):
                engine.sessions.record_interruption()
            cursor += timedelta(minutes=random.uniform(15, 120))
            clock.now = cursor
            engine.sessions.end(session.id)

        # ── Auxiliary payloads ──────────────────────────────────────────
        for hour in range(3):
            when = start + timedelta(hours=hour)
            positions = [[random.randint(0, 2560), random.randint(0, 1440)] for _ in range(200)]
            engine.ingest.record_payload(CLICK_POSITIONS, json.dumps(positions).encode(), when)
            frequency = {str(code): random.randint(1, 300) for code in random.sample(range(128), 20)}
            engine.ingest.record_payload(KEYCODE_FREQUENCY, json.dumps(frequency).encode(), when)
        engine.ingest.record_payload(
            CONTEXT_SWITCH, json.dumps({"count": random.randint(20, 200)}).encode(), cursor
        )

    clock.now = datetime.now()
    engine.rollups.aggregate_range(first_day, today)
    unlocked = engine.achievements.check_all()
    engine.close()
    print(f"Seeded {num_days} days; {len(unlocked)} achievements unlocked.")


if __name__ == "__main__":
    count = int(sys.argv[1]) if len(sys.argv) > 1 else 30
    seed(count)


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------
# What this script does:
#   Generates fake capture samples, focus sessions and payloads for the last
#   N days so rollups, streaks and achievements have something to show.
#
# Key points:
#   - Goes through IngestService and SessionService rather than raw SQL, so
#     seeded rows obey the same merge and lifecycle rules as live data.
#   - SeedClock moves the session service through past timestamps.
#   - Finishes with aggregate_range() and one achievement check.

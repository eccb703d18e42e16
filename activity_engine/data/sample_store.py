"""
Bounded Sample Store — auxiliary event payloads with capped retrieval.

Payloads (click positions, keycode histograms, context-switch counters, ...)
are stored as opaque bytes. On read they go through a per-event-type decoder;
rows that fail to decode are skipped so one bad blob never aborts a range
query.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from activity_engine.config import DEFAULT_SAMPLE_LIMIT
from activity_engine.data.database import Database
from activity_engine.data.dates import DayLike, day_bounds, to_timestamp
from activity_engine.data.models import RawEvent
from activity_engine.errors import DecodeError

logger = logging.getLogger(__name__)

CLICK_POSITIONS = "clickPositions"
KEYCODE_FREQUENCY = "keycodeFrequency"
CONTEXT_SWITCH = "contextSwitch"
MEETING = "meeting"

TimeLike = Union[datetime, float, int]


# ── Decoders ────────────────────────────────────────────────────────────────

def _load_json(event_type: str, data: Union[bytes, str]) -> Any:
    if isinstance(data, (bytes, bytearray, memoryview)):
        data = bytes(data)
    elif not isinstance(data, str):
        raise DecodeError(event_type, f"unsupported payload type {type(data).__name__}")
    try:
        return json.loads(data)
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecodeError(event_type, str(exc)) from exc


def _decode_click_positions(data: Union[bytes, str]) -> List[List[int]]:
    raw = _load_json(CLICK_POSITIONS, data)
    if not isinstance(raw, list):
        raise DecodeError(CLICK_POSITIONS, "expected a list of [x, y] pairs")
    positions = []
    for item in raw:
        if (not isinstance(item, list) or len(item) != 2
                or not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in item)):
            raise DecodeError(CLICK_POSITIONS, f"bad position {item!r}")
        positions.append([int(item[0]), int(item[1])])
    return positions


def _decode_keycode_frequency(data: Union[bytes, str]) -> Dict[int, int]:
    raw = _load_json(KEYCODE_FREQUENCY, data)
    if not isinstance(raw, dict):
        raise DecodeError(KEYCODE_FREQUENCY, "expected an object of keycode → count")
    try:
        return {int(code): int(count) for code, count in raw.items()}
    except (TypeError, ValueError) as exc:
        raise DecodeError(KEYCODE_FREQUENCY, str(exc)) from exc


def _counter_decoder(event_type: str, key: str) -> Callable[[bytes], Dict[str, int]]:
    def decode(data: Union[bytes, str]) -> Dict[str, int]:
        raw = _load_json(event_type, data)
        if not isinstance(raw, dict) or not isinstance(raw.get(key), int):
            raise DecodeError(event_type, f"missing integer '{key}'")
        return {key: raw[key]}
    return decode


DECODERS: Dict[str, Callable[[bytes], Any]] = {
    CLICK_POSITIONS: _decode_click_positions,
    KEYCODE_FREQUENCY: _decode_keycode_frequency,
    CONTEXT_SWITCH: _counter_decoder(CONTEXT_SWITCH, "count"),
    MEETING: _counter_decoder(MEETING, "duration"),
}


def decode_payload(event_type: str, data: Union[bytes, str]) -> Any:
    """Decode a payload for its event type; raises DecodeError when malformed."""
    decoder = DECODERS.get(event_type)
    if decoder is None:
        raise DecodeError(event_type, "unknown event type")
    return decoder(data)


def stride_sample(items: List[Any], remaining: int) -> List[Any]:
    """
    Evenly spaced subset of at most `remaining` items.

    Takes every stride-th item, stride = max(1, len(items) // remaining),
    so coverage spans the whole payload instead of truncating one end.
    """
    if remaining <= 0 or not items:
        return []
    if len(items) <= remaining:
        return list(items)
    stride = max(1, len(items) // remaining)
    indices = np.arange(0, len(items), stride)[:remaining]
    return [items[i] for i in indices]


class SampleStore:
    """Data-access layer for the raw_events table."""

    def __init__(self, db: Database, default_limit: int = DEFAULT_SAMPLE_LIMIT) -> None:
        self.db = db
        self.default_limit = default_limit

    # ── Writes ──────────────────────────────────────────────────────────────

    def store(
        self, event_type: str, payload: bytes, timestamp: Optional[TimeLike] = None
    ) -> RawEvent:
        ts = to_timestamp(timestamp) if timestamp is not None else time.time()
        with self.db.write() as conn:
            cur = conn.execute(
                "INSERT INTO raw_events (timestamp, event_type, data) VALUES (?, ?, ?)",
                (ts, event_type, bytes(payload)),
            )
        return RawEvent(id=cur.lastrowid, timestamp=datetime.fromtimestamp(ts),
                        event_type=event_type, data=bytes(payload))

    # ── Reads ───────────────────────────────────────────────────────────────

    def events(self, event_type: str, start: TimeLike, end: TimeLike) -> List[RawEvent]:
        """Undecoded rows in [start, end), newest first."""
        start_ts, end_ts = to_timestamp(start), to_timestamp(end)
        if start_ts > end_ts:
            return []
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM raw_events WHERE event_type = ? "
                "AND timestamp >= ? AND timestamp < ? ORDER BY timestamp DESC, id DESC",
                (event_type, start_ts, end_ts),
            ).fetchall()
        return [
            RawEvent(id=r["id"], timestamp=datetime.fromtimestamp(r["timestamp"]),
                     event_type=r["event_type"], data=r["data"])
            for r in rows
        ]

    def fetch(
        self,
        event_type: str,
        start: TimeLike,
        end: TimeLike,
        limit: Optional[int] = None,
    ) -> List[Any]:
        """
        Decoded list items from every payload in range, never more than limit.

        Payloads are consumed newest first. A payload that fits is taken
        whole; one that would overflow is stride-sampled into the remaining
        capacity, after which the result is full.
        """
        cap = self.default_limit if limit is None else limit
        if cap <= 0:
            return []

        result: List[Any] = []
        skipped = 0
        for event in self.events(event_type, start, end):
            remaining = cap - len(result)
            if remaining <= 0:
                break
            try:
                items = decode_payload(event_type, event.data)
            except DecodeError as exc:
                skipped += 1
                logger.debug("Skipping raw event %s: %s", event.id, exc)
                continue
            if not isinstance(items, list):
                items = [items]
            result.extend(stride_sample(items, remaining))

        if skipped:
            logger.warning("Skipped %d malformed '%s' payloads", skipped, event_type)
        return result

    def click_positions(
        self, start: TimeLike, end: TimeLike, limit: Optional[int] = None
    ) -> List[List[int]]:
        return self.fetch(CLICK_POSITIONS, start, end, limit)

    def keycode_frequency(self, start: TimeLike, end: TimeLike) -> Dict[int, int]:
        """Keycode histogram summed over every payload in range."""
        aggregated: Dict[int, int] = {}
        for event in self.events(KEYCODE_FREQUENCY, start, end):
            try:
                frequency = decode_payload(KEYCODE_FREQUENCY, event.data)
            except DecodeError as exc:
                logger.debug("Skipping raw event %s: %s", event.id, exc)
                continue
            for code, count in frequency.items():
                aggregated[code] = aggregated.get(code, 0) + count
        return aggregated

    def context_switch_count(self, day: DayLike) -> int:
        """Running count carried by the latest well-formed contextSwitch event of the day."""
        start, end = day_bounds(day)
        for event in self.events(CONTEXT_SWITCH, start, end):
            try:
                return decode_payload(CONTEXT_SWITCH, event.data)["count"]
            except DecodeError as exc:
                logger.debug("Skipping raw event %s: %s", event.id, exc)
        return 0

    def meeting_seconds(self, day: DayLike) -> int:
        start, end = day_bounds(day)
        total = 0
        for event in self.events(MEETING, start, end):
            try:
                total += decode_payload(MEETING, event.data)["duration"]
            except DecodeError as exc:
                logger.debug("Skipping raw event %s: %s", event.id, exc)
        return total

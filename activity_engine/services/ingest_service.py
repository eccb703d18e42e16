"""
Ingest Service — the capture-source write path.

The collector hands over (timestamp, bundle_id, display_name, deltas) samples
at roughly one-minute granularity. Each sample is aligned to its minute, the
app is found or created, and the counters are merged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional, Union

from activity_engine.data.app_registry import AppRegistry
from activity_engine.data.counter_store import CounterStore
from activity_engine.data.database import Database
from activity_engine.data.dates import align_to_minute, to_timestamp
from activity_engine.data.models import CounterDeltas, RawEvent
from activity_engine.data.sample_store import SampleStore

logger = logging.getLogger(__name__)


@dataclass
class CaptureSample:
    timestamp: Union[datetime, float, int]
    bundle_id: str
    display_name: str
    deltas: CounterDeltas = field(default_factory=CounterDeltas)


class IngestService:
    """Applies capture samples to the registry and counter store."""

    def __init__(
        self,
        db: Database,
        registry: AppRegistry,
        counters: CounterStore,
        samples: SampleStore,
    ) -> None:
        self.db = db
        self.registry = registry
        self.counters = counters
        self.samples = samples
        # bundle id → app id; ids are immutable once assigned
        self._app_ids: Dict[str, int] = {}

    def record(self, sample: CaptureSample) -> int:
        """Merge one sample. Returns the internal app id it was filed under."""
        app_id = self._app_id(sample.bundle_id, sample.display_name)
        self.counters.merge(align_to_minute(to_timestamp(sample.timestamp)), app_id, sample.deltas)
        return app_id

    def record_many(self, samples: Iterable[CaptureSample]) -> int:
        """Apply a batch in one write transaction. Returns the sample count."""
        new_ids: Dict[str, int] = {}
        with self.db.write():
            entries = []
            for s in samples:
                app_id = self._app_ids.get(s.bundle_id) or new_ids.get(s.bundle_id)
                if app_id is None:
                    app_id = self.registry.find_or_create(s.bundle_id, s.display_name).id
                    new_ids[s.bundle_id] = app_id
                entries.append((align_to_minute(to_timestamp(s.timestamp)), app_id, s.deltas))
            count = self.counters.merge_many(entries)
        # only cache ids whose insert committed
        self._app_ids.update(new_ids)
        logger.debug("Ingested batch of %d samples", count)
        return count

    def record_payload(
        self,
        event_type: str,
        payload: bytes,
        timestamp: Optional[Union[datetime, float, int]] = None,
    ) -> RawEvent:
        return self.samples.store(event_type, payload, timestamp)

    def _app_id(self, bundle_id: str, display_name: str) -> int:
        app_id = self._app_ids.get(bundle_id)
        if app_id is None:
            app_id = self.registry.find_or_create(bundle_id, display_name).id
            self._app_ids[bundle_id] = app_id
        return app_id

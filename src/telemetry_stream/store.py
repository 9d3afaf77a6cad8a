"""Bounded in-memory time-series store fed by the event bus.

The ingestion path is the only writer. Readers get copies of the internal
containers, never the containers themselves.
"""
from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Sequence

import structlog

from telemetry_stream.bus import EventBus, EventKind
from telemetry_stream.models import AGGREGATE_ENTITY_ID, METRIC_FIELDS, Sample

logger = structlog.get_logger(__name__)

MAX_SAMPLES_PER_ENTITY = 600


class TelemetryStore:
    """Per-entity rolling history plus derived aggregate views."""

    def __init__(self, capacity: int = MAX_SAMPLES_PER_ENTITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        # dict keys keep insertion order and double as the ordered entity set
        self._entities: dict[str, None] = {}
        self._history: dict[str, deque[Sample]] = {}
        self._last: dict[str, Sample | None] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    def set_entities(self, ids: Iterable[str]) -> None:
        wanted = dict.fromkeys(ids)
        stale = [e for e in self._entities if e not in wanted]
        for entity_id in stale:
            del self._history[entity_id]
            del self._last[entity_id]
        for entity_id in wanted:
            if entity_id not in self._history:
                self._history[entity_id] = deque(maxlen=self._capacity)
                self._last[entity_id] = None
        self._entities = wanted
        if stale:
            logger.debug("entities_pruned", entities=stale)

    def push(self, sample: Sample) -> None:
        entity_id = sample.entity_id
        if entity_id not in self._entities:
            self._entities[entity_id] = None
            self._history[entity_id] = deque(maxlen=self._capacity)
            logger.debug("entity_registered", entity=entity_id)
        # deque(maxlen=...) drops from the left once full
        self._history[entity_id].append(sample)
        # Last write wins, regardless of sample.timestamp ordering.
        self._last[entity_id] = sample

    def push_many(self, samples: Iterable[Sample]) -> None:
        for sample in samples:
            self.push(sample)

    def clear(self) -> None:
        self._entities = {}
        self._history = {}
        self._last = {}

    def attach(self, bus: EventBus) -> Callable[[], None]:
        """Subscribe this store to sample and entity-list events on ``bus``."""

        unsubscribers = [
            bus.subscribe(EventKind.SAMPLE, self.push),
            bus.subscribe(EventKind.ENTITIES, self.set_entities),
        ]

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return detach

    # ------------------------------------------------------------------ #
    # Read views
    # ------------------------------------------------------------------ #
    @property
    def entities(self) -> list[str]:
        return list(self._entities)

    @property
    def history_by_entity(self) -> dict[str, list[Sample]]:
        return {entity_id: list(history) for entity_id, history in self._history.items()}

    @property
    def last_by_entity(self) -> dict[str, Sample | None]:
        return dict(self._last)

    def history(self, entity_id: str) -> list[Sample]:
        return list(self._history.get(entity_id, ()))

    def last(self, entity_id: str) -> Sample | None:
        return self._last.get(entity_id)

    def last_aggregate(self) -> Sample | None:
        """Average the latest sample of every entity.

        Returns ``None`` when no entity has reported yet. Each metric is the
        mean over the entities that reported it; a metric nobody reported
        stays ``None``.
        """
        lasts = [s for s in self._last.values() if s is not None]
        if not lasts:
            return None
        return Sample(
            entity_id=AGGREGATE_ENTITY_ID,
            timestamp=max(s.timestamp for s in lasts),
            **{name: _mean(getattr(s, name) for s in lasts) for name in METRIC_FIELDS},
        )

    def history_flat(self) -> list[Sample]:
        # Full stable sort on every read; fine for a handful of entities x capacity.
        merged: list[Sample] = []
        for entity_id in self._entities:
            merged.extend(self._history[entity_id])
        merged.sort(key=lambda s: s.timestamp)
        return merged


def _mean(values: Iterable[float | None]) -> float | None:
    present: Sequence[float] = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)

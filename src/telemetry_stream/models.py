from __future__ import annotations

import time
from dataclasses import dataclass

DEFAULT_ENTITY_ID = "DEFAULT"
AGGREGATE_ENTITY_ID = "ALL"

METRIC_FIELDS: tuple[str, ...] = ("throughput", "latency", "alert_rate", "flow_index")


def now_ms() -> int:
    """Return the current wall-clock time in milliseconds since the epoch."""

    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class Sample:
    """One telemetry reading for one entity.

    Metric fields left out by the producer stay ``None``; they are never
    coerced to zero.
    """

    entity_id: str
    timestamp: int
    throughput: float | None = None
    latency: float | None = None
    alert_rate: float | None = None
    flow_index: float | None = None

    def as_wire_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"node": self.entity_id, "ts": self.timestamp}
        if self.throughput is not None:
            payload["throughput"] = self.throughput
        if self.latency is not None:
            payload["latencyMs"] = self.latency
        if self.alert_rate is not None:
            payload["alertRate"] = self.alert_rate
        if self.flow_index is not None:
            payload["flowIndex"] = self.flow_index
        return payload

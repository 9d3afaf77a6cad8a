"""Self-healing telemetry feed client with a bounded in-memory store."""

from telemetry_stream.bus import EventBus, EventKind
from telemetry_stream.channel import ConnectionState, TelemetryChannel
from telemetry_stream.models import Sample
from telemetry_stream.pipeline import TelemetryPipeline
from telemetry_stream.store import TelemetryStore

__all__ = [
    "ConnectionState",
    "EventBus",
    "EventKind",
    "Sample",
    "TelemetryChannel",
    "TelemetryPipeline",
    "TelemetryStore",
]

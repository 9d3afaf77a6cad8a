from __future__ import annotations

from types import TracebackType

from telemetry_stream.bus import EventBus
from telemetry_stream.channel import TelemetryChannel
from telemetry_stream.settings import Settings
from telemetry_stream.store import TelemetryStore


class TelemetryPipeline:
    """Channel -> bus -> store, wired from settings.

    The store subscribes to the bus on construction so that no frame received
    after :meth:`start` can miss it.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.bus = EventBus()
        self.store = TelemetryStore(capacity=settings.store.capacity)
        self.store.attach(self.bus)
        self.channel = TelemetryChannel(
            settings.channel.url,
            self.bus,
            reconnect_delay_ms=settings.channel.reconnect_delay_ms,
            heartbeat_interval_ms=settings.channel.heartbeat_interval_ms,
            connect_timeout_s=settings.channel.connect_timeout_s,
        )

    def start(self) -> None:
        self.channel.connect()

    async def stop(self) -> None:
        await self.channel.aclose()

    def reset(self) -> None:
        """Drop all accumulated state, keeping the connection."""
        self.store.clear()

    async def __aenter__(self) -> "TelemetryPipeline":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

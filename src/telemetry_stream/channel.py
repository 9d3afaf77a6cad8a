"""WebSocket channel feeding decoded telemetry frames into the event bus.

The channel keeps at most one live connection. Any loss of that connection,
including a failed handshake, goes through the same path: stop the heartbeat,
publish ``CLOSE`` and arm a single fixed-delay reconnect timer. Only
:meth:`TelemetryChannel.disconnect` stops the cycle.
"""
from __future__ import annotations

import asyncio
from collections.abc import Mapping
from enum import Enum
from typing import Any

import aiohttp
import structlog

from telemetry_stream.bus import EventBus, EventKind
from telemetry_stream.exceptions import FrameDecodeError
from telemetry_stream.protocol import (
    BatchMetricFrame,
    EntityListFrame,
    Frame,
    MetricFrame,
    ModeFrame,
    encode_frame,
    mode_frame,
    parse_frame,
    ping_frame,
)

logger = structlog.get_logger(__name__)

RECONNECT_DELAY_MS = 1500
HEARTBEAT_INTERVAL_MS = 20_000
CONNECT_TIMEOUT_S = 10.0


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class TelemetryChannel:
    """Self-healing WebSocket client for the telemetry feed."""

    def __init__(
        self,
        url: str,
        bus: EventBus,
        *,
        reconnect_delay_ms: int = RECONNECT_DELAY_MS,
        heartbeat_interval_ms: int = HEARTBEAT_INTERVAL_MS,
        connect_timeout_s: float = CONNECT_TIMEOUT_S,
    ):
        self.url = url
        self.bus = bus
        self.reconnect_delay_s = reconnect_delay_ms / 1000.0
        self.heartbeat_interval_s = heartbeat_interval_ms / 1000.0
        self.connect_timeout_s = connect_timeout_s
        self._state = ConnectionState.IDLE
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._conn_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def connect(self) -> None:
        """Start a connection attempt unless one is in flight or open.

        Must be called from a running event loop.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return
        loop = asyncio.get_running_loop()
        self._state = ConnectionState.CONNECTING
        logger.info("ws_connecting", url=self.url)
        self._conn_task = loop.create_task(self._run())

    def disconnect(self) -> None:
        """Tear down timers and the live connection; safe from any state."""
        self._cancel_reconnect()
        self._stop_heartbeat()
        task, self._conn_task = self._conn_task, None
        if task is not None and not task.done():
            # The task closes the socket and session while unwinding.
            task.cancel()
        self._ws = None
        if self._state is not ConnectionState.IDLE:
            logger.info("ws_disconnected", url=self.url)
        self._state = ConnectionState.IDLE

    async def aclose(self) -> None:
        """Disconnect and wait until the connection task has unwound."""
        pending = [t for t in (self._conn_task, self._heartbeat_task) if t is not None]
        self.disconnect()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self) -> None:
        error: BaseException | None = None
        try:
            async with aiohttp.ClientSession() as session:
                ws = await asyncio.wait_for(session.ws_connect(self.url), timeout=self.connect_timeout_s)
                async with ws:
                    self._on_open(ws)
                    async for msg in ws:
                        if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                            self.handle_frame(msg.data)
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            error = ws.exception()
                            break
        except asyncio.CancelledError:
            # disconnect() owns the state in this case
            raise
        except Exception as exc:
            # Handshake failures, refused connections and transport errors
            # are all treated as a close.
            error = exc
        if self._conn_task is not asyncio.current_task():
            # Superseded by disconnect() followed by a new connect().
            return
        self._on_closed(error)

    def _on_open(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws
        self._state = ConnectionState.OPEN
        logger.info("ws_open", url=self.url)
        self.bus.publish(EventKind.OPEN)
        self._start_heartbeat()

    def _on_closed(self, error: BaseException | None) -> None:
        self._ws = None
        self._conn_task = None
        self._state = ConnectionState.CLOSED
        self._stop_heartbeat()
        if error is not None:
            logger.warning("ws_error", url=self.url, error=repr(error))
            self.bus.publish(EventKind.ERROR, error)
        logger.info("ws_closed", url=self.url)
        self.bus.publish(EventKind.CLOSE)
        # A CLOSE handler may have called connect() or disconnect().
        if self._state is ConnectionState.CLOSED:
            self._schedule_reconnect()

    # ------------------------------------------------------------------ #
    # Timers
    # ------------------------------------------------------------------ #
    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay_s, self._on_reconnect_timer)
        logger.info("ws_reconnect_scheduled", url=self.url, delay_ms=int(self.reconnect_delay_s * 1000))

    def _on_reconnect_timer(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        handle, self._reconnect_handle = self._reconnect_handle, None
        if handle is not None:
            handle.cancel()

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval_s)
            await self.send(ping_frame())

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #
    async def send(self, message: Mapping[str, Any]) -> None:
        """Send ``message`` as JSON if the channel is open; otherwise do nothing."""
        ws = self._ws
        if self._state is not ConnectionState.OPEN or ws is None or ws.closed:
            return
        try:
            await ws.send_str(encode_frame(message))
        except (aiohttp.ClientError, OSError, RuntimeError, TypeError, ValueError) as exc:
            logger.debug("ws_send_failed", url=self.url, error=repr(exc))

    async def request_mode(self, mode: str) -> None:
        await self.send(mode_frame(mode))

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #
    def handle_frame(self, raw: str | bytes) -> None:
        """Decode one inbound frame and publish the events it carries."""
        try:
            frame = parse_frame(raw)
        except FrameDecodeError as exc:
            logger.debug("frame_dropped", reason=str(exc))
            return
        if frame is None:
            logger.debug("frame_ignored")
            return
        self._dispatch(frame)

    def _dispatch(self, frame: Frame) -> None:
        if isinstance(frame, BatchMetricFrame):
            for sample in frame.samples:
                self.bus.publish(EventKind.SAMPLE, sample)
            if frame.samples:
                self.bus.publish(EventKind.ENTITIES, list(frame.entity_ids))
        elif isinstance(frame, MetricFrame):
            self.bus.publish(EventKind.SAMPLE, frame.sample)
        elif isinstance(frame, EntityListFrame):
            self.bus.publish(EventKind.ENTITIES, list(frame.entity_ids))
        elif isinstance(frame, ModeFrame):
            self.bus.publish(EventKind.MODE, frame.mode)

"""Scenario-driven mock telemetry feed.

One port serves everything: a WebSocket upgrade on ``/`` streams
``multi-metric`` frames to every client, while plain ``GET /``, ``/health``
and ``/snapshot`` return JSON. Clients switch the active scenario by sending
any frame with a ``mode`` field.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import random
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog
from aiohttp import WSMsgType, web

from telemetry_stream.models import Sample, now_ms
from telemetry_stream.protocol import FRAME_INFO, FRAME_MULTI_METRIC, encode_frame
from telemetry_stream.settings import MockServerSettings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Scenario:
    latency: float
    throughput: float
    alert: float
    latency_dev: float
    throughput_dev: float
    alert_dev: float


DEFAULT_MODE = "NORMAL"

SCENARIOS: dict[str, Scenario] = {
    "NORMAL": Scenario(latency=50, throughput=200, alert=0.02, latency_dev=15, throughput_dev=25, alert_dev=0.03),
    "CONGESTION": Scenario(
        latency=180, throughput=110, alert=0.12, latency_dev=40, throughput_dev=50, alert_dev=0.06
    ),
    "OUTAGE": Scenario(latency=600, throughput=5, alert=0.95, latency_dev=80, throughput_dev=10, alert_dev=0.02),
    "FLAP": Scenario(latency=250, throughput=180, alert=0.25, latency_dev=70, throughput_dev=60, alert_dev=0.1),
}


def _jitter(rng: random.Random, mean: float, dev: float) -> float:
    return mean + (rng.random() * 2.0 - 1.0) * dev


def generate_sample(node: str, mode: str, *, rng: random.Random, ts: int | None = None) -> Sample:
    s = SCENARIOS.get(mode, SCENARIOS[DEFAULT_MODE])
    return Sample(
        entity_id=node,
        timestamp=ts if ts is not None else now_ms(),
        throughput=max(0.0, _jitter(rng, s.throughput, s.throughput_dev)),
        latency=max(0.0, _jitter(rng, s.latency, s.latency_dev)),
        alert_rate=min(1.0, max(0.0, _jitter(rng, s.alert, s.alert_dev))),
        flow_index=rng.random(),
    )


class MockFeed:
    """State shared by all WebSocket clients of one mock server."""

    def __init__(self, nodes: Iterable[str], mode: str = DEFAULT_MODE, *, rng: random.Random | None = None):
        self.nodes = list(nodes)
        self.mode = mode
        self.clients: set[web.WebSocketResponse] = set()
        self._rng = rng or random.Random()

    def snapshot(self) -> dict[str, Any]:
        return {"nodes": list(self.nodes), "mode": self.mode}

    def info_frame(self) -> dict[str, Any]:
        return {"type": FRAME_INFO, **self.snapshot()}

    def tick_frame(self) -> dict[str, Any]:
        ts = now_ms()
        return {
            "type": FRAME_MULTI_METRIC,
            "data": [generate_sample(node, self.mode, rng=self._rng, ts=ts).as_wire_dict() for node in self.nodes],
        }

    def apply_client_message(self, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except ValueError:
            return
        if not isinstance(payload, dict) or not payload.get("mode"):
            return
        self.mode = str(payload["mode"]).upper()
        logger.info("mock_mode_changed", mode=self.mode)

    async def broadcast(self, frame: dict[str, Any]) -> None:
        message = encode_frame(frame)
        for ws in list(self.clients):
            if ws.closed:
                self.clients.discard(ws)
                continue
            try:
                await ws.send_str(message)
            except (ConnectionResetError, RuntimeError):
                self.clients.discard(ws)


FEED_KEY = web.AppKey("feed", MockFeed)
TICK_INTERVAL_KEY = web.AppKey("tick_interval_s", float)
TICKER_KEY = web.AppKey("ticker", asyncio.Task)

routes = web.RouteTableDef()


@routes.get("/")
async def root(request: web.Request) -> web.StreamResponse:
    ws = web.WebSocketResponse()
    if not ws.can_prepare(request).ok:
        return web.json_response({"ok": True})

    await ws.prepare(request)
    feed = request.app[FEED_KEY]
    feed.clients.add(ws)
    logger.info("mock_client_connected", clients=len(feed.clients))
    try:
        await ws.send_str(encode_frame(feed.info_frame()))
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                feed.apply_client_message(msg.data)
    finally:
        feed.clients.discard(ws)
        logger.info("mock_client_disconnected", clients=len(feed.clients))
    return ws


@routes.get("/health")
async def healthcheck(_request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


@routes.get("/snapshot")
async def snapshot(request: web.Request) -> web.Response:
    return web.json_response(request.app[FEED_KEY].snapshot())


async def _ticker(app: web.Application) -> None:
    feed = app[FEED_KEY]
    interval = app[TICK_INTERVAL_KEY]
    while True:
        await asyncio.sleep(interval)
        await feed.broadcast(feed.tick_frame())


async def start_ticker(app: web.Application) -> None:
    app[TICKER_KEY] = asyncio.create_task(_ticker(app))


async def stop_ticker(app: web.Application) -> None:
    task = app[TICKER_KEY]
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


async def close_clients(app: web.Application) -> None:
    for ws in list(app[FEED_KEY].clients):
        await ws.close(code=1001, message=b"Server shutdown")


def create_app(settings: MockServerSettings | None = None, *, rng: random.Random | None = None) -> web.Application:
    settings = settings or MockServerSettings()
    app = web.Application()
    app[FEED_KEY] = MockFeed(settings.nodes, settings.mode, rng=rng)
    app[TICK_INTERVAL_KEY] = settings.tick_ms / 1000.0
    app.add_routes(routes)

    app.on_startup.append(start_ticker)
    app.on_shutdown.append(close_clients)
    app.on_cleanup.append(stop_ticker)
    return app


def run(settings: MockServerSettings) -> None:
    logger.info("mock_server_starting", host=settings.host, port=settings.port, nodes=settings.nodes)
    web.run_app(create_app(settings), host=settings.host, port=settings.port, access_log=None, print=None)

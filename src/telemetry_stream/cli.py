from __future__ import annotations

import argparse
import asyncio
import signal

import structlog

from telemetry_stream.bus import EventKind
from telemetry_stream.logging_config import configure_logging
from telemetry_stream.mock_server import run as run_mock_server
from telemetry_stream.pipeline import TelemetryPipeline
from telemetry_stream.settings import Settings, load_settings

logger = structlog.get_logger(__name__)


async def watch(settings: Settings, *, report_interval_s: float, url: str | None = None) -> None:
    """Run the pipeline and log the cross-entity aggregate until cancelled."""
    if url:
        settings = settings.model_copy(update={"channel": settings.channel.model_copy(update={"url": url})})

    pipeline = TelemetryPipeline(settings)
    pipeline.bus.subscribe(EventKind.MODE, lambda mode: logger.info("mode_changed", mode=mode))
    pipeline.bus.subscribe(EventKind.ENTITIES, lambda ids: logger.info("entities_updated", entities=ids))

    async with pipeline:
        while True:
            await asyncio.sleep(report_interval_s)
            agg = pipeline.store.last_aggregate()
            if agg is None:
                logger.info("no_data", connected=pipeline.channel.connected)
                continue
            logger.info(
                "aggregate",
                connected=pipeline.channel.connected,
                entities=len(pipeline.store.entities),
                ts=agg.timestamp,
                throughput=agg.throughput,
                latency=agg.latency,
                alert_rate=agg.alert_rate,
                flow_index=agg.flow_index,
            )


def _run_until_signal(coro_factory) -> None:  # noqa: ANN001
    async def _main() -> None:
        stop = asyncio.Event()

        def _handle_stop(*_args) -> None:  # noqa: ANN001
            stop.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _handle_stop)
            except NotImplementedError:
                pass

        task = asyncio.create_task(coro_factory())
        await stop.wait()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            return

    asyncio.run(_main())


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="telemetry-stream")
    parser.add_argument("--config", help="Path to YAML config")
    sub = parser.add_subparsers(dest="command", required=True)

    watch_parser = sub.add_parser("watch", help="Connect to a feed and log the aggregate")
    watch_parser.add_argument("--url", help="Override channel.url")
    watch_parser.add_argument("--interval", type=float, default=2.0, help="Seconds between reports")

    mock_parser = sub.add_parser("mock-server", help="Serve a synthetic multi-node feed")
    mock_parser.add_argument("--port", type=int, help="Override mock_server.port")

    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    configure_logging(settings.logging.level, json_logs=settings.logging.json_logs)

    if args.command == "mock-server":
        mock = settings.mock_server
        if args.port:
            mock = mock.model_copy(update={"port": args.port})
        run_mock_server(mock)
        return

    _run_until_signal(lambda: watch(settings, report_interval_s=args.interval, url=args.url))


if __name__ == "__main__":
    main()

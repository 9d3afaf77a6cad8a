"""In-process publish/subscribe hub between the channel and its consumers."""
from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

Handler = Callable[[Any], None]


class EventKind(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    ERROR = "error"
    SAMPLE = "sample"
    ENTITIES = "entities"
    MODE = "mode"


class EventBus:
    """Synchronous fan-out of events to handlers registered per kind.

    Handlers run in subscription order on the publisher's call stack. Events
    published while nobody listens for their kind are lost.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[Handler]] = {}

    def subscribe(self, kind: EventKind, handler: Handler) -> Callable[[], None]:
        self._handlers.setdefault(kind, []).append(handler)
        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            handlers = self._handlers.get(kind)
            if not handlers:
                return
            # Identity match: the same callable may be subscribed more than once.
            for i, h in enumerate(handlers):
                if h is handler:
                    del handlers[i]
                    break

        return unsubscribe

    def publish(self, kind: EventKind, payload: Any = None) -> None:
        for handler in tuple(self._handlers.get(kind, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("bus_handler_failed", kind=kind.value)

    def subscriber_count(self, kind: EventKind) -> int:
        return len(self._handlers.get(kind, ()))

    def clear(self) -> None:
        self._handlers.clear()

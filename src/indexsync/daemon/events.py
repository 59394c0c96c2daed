"""In-process event bus for record lifecycle notifications.

Publishers emit an EventKey with a small payload; every handler subscribed to
that key receives it in its own asyncio task. Delivery is fire-and-forget:
publish() never waits for handlers and handler failures are logged only.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


class EventKey(str, Enum):
    """Events the search listeners react to."""

    RECORD_READY = "record.ready"
    RECORD_UPDATED = "record.updated"
    RECORD_DELETED = "record.deleted"
    CLASSIFIER_RUN_COMPLETE = "classifier.run_complete"


@dataclass(frozen=True, slots=True)
class RecordEvent:
    """A canonical record changed state."""

    record_id: str


@dataclass(frozen=True, slots=True)
class ClassifierRunEvent:
    """A classifier finished enriching a record (its embeddable text changed)."""

    record_id: str
    classifier: str | None = None


Handler = Callable[[Any], Awaitable[None]]


class EventBus:
    """Maps event keys to async handlers."""

    def __init__(self) -> None:
        self._handlers: dict[EventKey, list[Handler]] = {}
        self._inflight: set[asyncio.Task[None]] = set()

    def subscribe(self, key: EventKey, handler: Handler) -> None:
        self._handlers.setdefault(key, []).append(handler)

    def unsubscribe(self, key: EventKey, handler: Handler) -> None:
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, key: EventKey, payload: Any) -> int:
        """Schedule delivery to every handler of ``key``. Returns the handler count."""
        handlers = list(self._handlers.get(key, ()))
        if not handlers:
            logger.debug("event_unhandled", event_key=key.value)
            return 0

        loop = asyncio.get_running_loop()
        for handler in handlers:
            task = loop.create_task(self._deliver(key, handler, payload))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
        return len(handlers)

    async def _deliver(self, key: EventKey, handler: Handler, payload: Any) -> None:
        try:
            await handler(payload)
        except Exception as e:
            logger.error(
                "event_handler_failed",
                event_key=key.value,
                handler=getattr(handler, "__qualname__", repr(handler)),
                error=str(e),
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait until all deliveries scheduled so far have finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
            # Let done-callbacks prune the set
            await asyncio.sleep(0)

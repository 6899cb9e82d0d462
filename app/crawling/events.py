"""
Typed lifecycle events and a small listener registry.

Listeners may be plain callables or coroutine functions; each receives the
`CrawlEvent`. A failing listener is logged and never breaks the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from app.crawling.logging_utils import error_fields, log_event

logger = logging.getLogger(__name__)

CATEGORY_CRAWLED = "categoryCrawled"
PRODUCT_CRAWLED = "productCrawled"
MULTIPLE_CRAWLED = "multipleCrawled"
CHECKOUT_CRAWLED = "checkoutCrawled"
SEARCH_CRAWLED = "searchCrawled"
PRODUCTS_UPDATED = "productsUpdated"
ALL_CATEGORIES_CRAWLED = "allCategoriesCrawled"
TASK_COMPLETED = "taskCompleted"
TASK_FAILED = "taskFailed"
QUEUE_PAUSED = "queuePaused"
QUEUE_RESUMED = "queueResumed"
QUEUE_CLEARED = "queueCleared"
ERROR = "error"

ALL_EVENTS = frozenset(
    {
        CATEGORY_CRAWLED,
        PRODUCT_CRAWLED,
        MULTIPLE_CRAWLED,
        CHECKOUT_CRAWLED,
        SEARCH_CRAWLED,
        PRODUCTS_UPDATED,
        ALL_CATEGORIES_CRAWLED,
        TASK_COMPLETED,
        TASK_FAILED,
        QUEUE_PAUSED,
        QUEUE_RESUMED,
        QUEUE_CLEARED,
        ERROR,
    }
)

WILDCARD = "*"


@dataclass(frozen=True)
class CrawlEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[CrawlEvent], Union[None, Awaitable[None]]]


class EventBus:
    """
    Publish named events to any number of registered listeners.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def on(self, name: str, listener: Listener) -> None:
        if name != WILDCARD and name not in ALL_EVENTS:
            raise ValueError(f"Unknown event name: {name!r}")
        self._listeners[name].append(listener)

    def off(self, name: str, listener: Listener) -> None:
        listeners = self._listeners.get(name, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, name: str, **payload: Any) -> CrawlEvent:
        event = CrawlEvent(name=name, payload=payload)
        for listener in [*self._listeners.get(name, []), *self._listeners.get(WILDCARD, [])]:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "event_listener_failed",
                    event_name=name,
                    **error_fields(exc),
                )
        return event

    async def drain(self) -> None:
        """
        Wait for coroutine listeners scheduled by `emit`.
        """

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_event(logger, logging.ERROR, "event_listener_failed", **error_fields(exc))

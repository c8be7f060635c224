"""Publish/subscribe bus that tells views and workers when records change."""

import asyncio
import enum
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class Topic(str, enum.Enum):
    """Events published by the store facade and the embedding pipeline."""

    UPLOADED = "image_uploaded"
    PROCESSED = "image_processed"
    DELETED = "image_deleted"
    CLEARED = "images_cleared"
    PROGRESS = "embedding_progress"


class EventBus:
    """Synchronous in-process event bus.

    Handlers run in subscription order at publish time, so a single
    subscriber sees the publishes of a topic in the order they were made.
    Handlers that return a coroutine have it scheduled on the running loop.
    Nothing is persisted: a handler registered after a publish never sees it.
    """

    def __init__(self):
        self._handlers: dict[Topic, list[Handler]] = {topic: [] for topic in Topic}
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, topic: Topic, handler: Handler) -> Callable[[], None]:
        """Register a handler and return a function that removes it."""
        handlers = self._handlers[Topic(topic)]
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: Topic, payload: Optional[Any] = None) -> None:
        topic = Topic(topic)
        # Copy so handlers may unsubscribe themselves while being called
        for handler in list(self._handlers[topic]):
            try:
                result = handler(payload)
            except Exception:
                logger.exception("Handler %r failed for %s", handler, topic.value)
                continue
            if inspect.isawaitable(result):
                self._schedule(result, topic)

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._handlers[Topic(topic)])

    async def drain(self) -> None:
        """Wait for coroutine handlers scheduled by earlier publishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, awaitable, topic: Topic) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "Async handler failed for %s: %s", topic.value, t.exception()
                )

        task.add_done_callback(_done)

"""
Asyncio-based event bus connecting notification sources to facewatch modules.

Topics are matched exactly. Handlers run as independent tasks so a slow
capture session never blocks the delivery of the next camera notification.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from asyncio import QueueEmpty
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .contracts import BasePayload, EventHandler

logger = logging.getLogger(__name__)


Handler = Callable[[str, BasePayload], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    """Handle for a topic subscription."""

    topic: str
    handler: EventHandler


class EventBus:
    """Minimal asynchronous publish/subscribe bus."""

    def __init__(self, *, queue_size: int = 128) -> None:
        self._queue: asyncio.Queue[tuple[str, BasePayload]] = asyncio.Queue(maxsize=queue_size)
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self._stopping = asyncio.Event()
        self._dropped_total = 0

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        """Register an async handler for a topic."""
        self._subscribers[topic].append(handler)
        logger.debug("Subscribed handler %s to topic %s", handler, topic)
        return Subscription(topic=topic, handler=handler)

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a previously registered handler."""
        handlers = self._subscribers.get(subscription.topic, [])
        if subscription.handler in handlers:
            handlers.remove(subscription.handler)
            logger.debug(
                "Unsubscribed handler %s from topic %s", subscription.handler, subscription.topic
            )

    async def publish(self, topic: str, payload: BasePayload) -> None:
        """Publish a payload for a specific topic."""
        if self._queue.full():
            logger.warning("Event bus queue is full; publisher will wait for free space.")
        await self._queue.put((topic, payload))
        logger.debug("Queued payload for topic %s", topic)

    async def start(self) -> None:
        """Start the dispatcher loop."""
        if self._dispatcher_task is None:
            self._stopping.clear()
            self._dispatcher_task = asyncio.create_task(self._dispatcher(), name="facewatch-bus")
            logger.info("Event bus dispatcher started.")

    async def stop(self) -> None:
        """Stop the dispatcher loop and wait for in-flight handlers."""
        if self._dispatcher_task is None:
            return
        self._stopping.set()
        await self._queue.put(("", _StopPayload()))
        await self._dispatcher_task
        self._dispatcher_task = None
        if self._handler_tasks:
            pending = list(self._handler_tasks)
            self._handler_tasks.clear()
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Event bus dispatcher stopped.")

    async def _dispatcher(self) -> None:
        while not self._stopping.is_set():
            topic, payload = await self._queue.get()
            try:
                if isinstance(payload, _StopPayload):
                    break

                handlers = list(self._subscribers.get(topic, []))
                logger.debug("Dispatching payload on topic %s to %d handlers", topic, len(handlers))
                for handler in handlers:
                    task = asyncio.create_task(self._call_handler(handler, topic, payload))
                    self._handler_tasks.add(task)
                    task.add_done_callback(self._make_done_callback(topic))
            finally:
                self._queue.task_done()
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except QueueEmpty:
                break
            else:
                self._dropped_total += 1
                self._queue.task_done()
        if self._dropped_total:
            logger.info("Event bus dispatcher dropped %d queued events.", self._dropped_total)

    def _make_done_callback(self, topic: str) -> Callable[[asyncio.Task[None]], None]:
        def _on_done(task: asyncio.Task[None]) -> None:
            self._handler_tasks.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.error("Subscriber handler failed on topic %s", topic, exc_info=exc)

        return _on_done

    async def _call_handler(self, handler: Handler, topic: str, payload: BasePayload) -> None:
        result = handler(topic, payload)
        if inspect.isawaitable(result):
            await result


class _StopPayload(BasePayload):
    """Sentinel payload to signal dispatcher shutdown."""

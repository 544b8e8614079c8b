"""In-process publish/subscribe bus for variable lifecycle events."""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from gvflow.models.event import VariableEvent, VariableEventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[VariableEvent], Awaitable[None] | None]


@dataclass(eq=False)
class _Subscription:
    event_type: VariableEventType
    handler: EventHandler
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    worker: asyncio.Task | None = None


class EventBus:
    """Fan out variable events to subscribers.

    Each subscription owns a queue drained by its own worker task, so
    ``publish`` never waits on a handler, a failing handler only loses its own
    event, and each subscriber sees events of one type in publish order.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[VariableEventType, list[_Subscription]] = {}
        self._started = False

    @property
    def subscriber_count(self) -> int:
        """Number of live subscriptions across all event types."""
        return sum(len(subs) for subs in self._subscriptions.values())

    async def start(self) -> None:
        """Start delivery workers for every subscription."""
        self._started = True
        for subs in self._subscriptions.values():
            for sub in subs:
                self._start_worker(sub)
        logger.info(f"Event bus started ({self.subscriber_count} subscription(s))")

    async def shutdown(self) -> None:
        """Stop all workers and drop every subscription."""
        self._started = False
        subs = [sub for subs in self._subscriptions.values() for sub in subs]
        self._subscriptions.clear()
        for sub in subs:
            await self._stop_worker(sub)
        logger.info("Event bus shutdown complete")

    def subscribe(
        self, event_type: VariableEventType | str, handler: EventHandler
    ) -> Callable[[], None]:
        """Register a handler for one event type.

        Returns:
            A function that removes the subscription.
        """
        sub = _Subscription(event_type=VariableEventType(event_type), handler=handler)
        self._subscriptions.setdefault(sub.event_type, []).append(sub)
        if self._started:
            self._start_worker(sub)

        def unsubscribe() -> None:
            subs = self._subscriptions.get(sub.event_type, [])
            if sub in subs:
                subs.remove(sub)
            if sub.worker is not None:
                sub.worker.cancel()
                sub.worker = None

        return unsubscribe

    def subscribe_many(
        self, handlers: dict[VariableEventType | str, EventHandler]
    ) -> Callable[[], None]:
        """Register several handlers at once; returns a single unsubscribe."""
        unsubscribers = [self.subscribe(t, h) for t, h in handlers.items()]

        def unsubscribe_all() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return unsubscribe_all

    def publish(self, event_type: VariableEventType | str, payload: Any) -> VariableEvent:
        """Queue an event for every subscriber of its type and return immediately."""
        event = VariableEvent(type=VariableEventType(event_type), payload=payload)
        for sub in self._subscriptions.get(event.type, []):
            sub.queue.put_nowait(event)
        logger.debug(f"Published {event.type.value} event")
        return event

    async def drain(self) -> None:
        """Wait until every event published so far has been handled."""
        subs = [sub for subs in self._subscriptions.values() for sub in subs]
        await asyncio.gather(*(sub.queue.join() for sub in subs if sub.worker is not None))

    def _start_worker(self, sub: _Subscription) -> None:
        if sub.worker is None:
            sub.worker = asyncio.create_task(self._deliver(sub))

    async def _stop_worker(self, sub: _Subscription) -> None:
        if sub.worker is not None:
            sub.worker.cancel()
            try:
                await sub.worker
            except asyncio.CancelledError:
                pass
            sub.worker = None

    async def _deliver(self, sub: _Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                result = sub.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(
                    f"Handler {getattr(sub.handler, '__name__', sub.handler)!r} "
                    f"failed on {event.type.value} event: {e}"
                )
            finally:
                sub.queue.task_done()

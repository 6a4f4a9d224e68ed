"""
Progress events and their delivery.

Strategy runs publish StrategyEvent records to an EventBus. Delivery is
best effort: having no subscriber, a full subscriber queue, or a failing
listener never affects the run that published the event.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class EventKind(StrEnum):
    """
    What a progress event reports.

    Healing progress inside a CLICK step is reported as STEP_START
    (selector failed, vision running) and STEP_COMPLETE (target found).
    """

    STRATEGY_START = "STRATEGY_START"
    STEP_START = "STEP_START"
    STEP_COMPLETE = "STEP_COMPLETE"
    STRATEGY_COMPLETE = "STRATEGY_COMPLETE"
    ERROR = "ERROR"


class EventStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class StrategyEvent:
    """A single immutable progress record."""

    kind: EventKind
    message: str
    status: EventStatus
    timestamp: int
    step_id: str | None = None
    run_id: str | None = None
    strategy_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = str(self.kind)
        data["status"] = str(self.status)
        return data


EventListener = Callable[[StrategyEvent], None]


class EventSubscription:
    """
    Bounded async feed of events for one consumer.

    Usage:
        async with bus.subscribe() as events:
            async for event in events:
                ...
    """

    def __init__(self, bus: EventBus, maxsize: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[StrategyEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: StrategyEvent) -> bool:
        """Enqueue without blocking; returns False when the event was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def get(self) -> StrategyEvent:
        return await self._queue.get()

    def get_nowait(self) -> StrategyEvent | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._unsubscribe(self)

    async def __aenter__(self) -> EventSubscription:
        return self

    async def __aexit__(self, *args: object) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[StrategyEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StrategyEvent]:
        while not self.closed:
            yield await self._queue.get()


class EventBus:
    """
    Fan-out of strategy events to listeners and subscriptions.

    Listeners are plain callables invoked synchronously on publish;
    subscriptions are bounded queues drained by async consumers.
    """

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._listeners: list[EventListener] = []
        self._subscriptions: list[EventSubscription] = []
        self._last_timestamp = 0
        self._log = logger.bind(component="event_bus")

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners) + len(self._subscriptions)

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            self.remove_listener(listener)

        return remove

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self, maxsize: int | None = None) -> EventSubscription:
        subscription = EventSubscription(self, maxsize or self._queue_size)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: EventSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: StrategyEvent) -> None:
        """Deliver an event to every listener and subscription."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self._log.warning("Event listener failed", error=str(e), kind=str(event.kind))

        for subscription in list(self._subscriptions):
            if not subscription.offer(event):
                self._log.warning(
                    "Subscriber queue full, event dropped",
                    kind=str(event.kind),
                    run_id=event.run_id,
                    dropped=subscription.dropped,
                )

    def emit(
        self,
        kind: EventKind,
        message: str,
        status: EventStatus,
        *,
        step_id: str | None = None,
        run_id: str | None = None,
        strategy_id: str | None = None,
    ) -> StrategyEvent:
        """
        Build, publish and return an event stamped with the current time.

        Timestamps never decrease across events emitted by one bus, even if
        the wall clock steps backwards.
        """
        self._last_timestamp = max(now_ms(), self._last_timestamp)
        event = StrategyEvent(
            kind=kind,
            message=message,
            status=status,
            timestamp=self._last_timestamp,
            step_id=step_id,
            run_id=run_id,
            strategy_id=strategy_id,
        )
        self.publish(event)
        return event

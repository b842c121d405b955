"""Notification channel between the process core and its consumers."""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Union

from devharbor.models import ProjectStatus

logger = py_logging.getLogger(__name__)

DEFAULT_SUBSCRIBER_BUFFER = 1000
DEFAULT_HISTORY_SIZE = 500


@dataclass(frozen=True)
class OutputEvent:
    project_id: str
    text: str


@dataclass(frozen=True)
class StatusChanged:
    project_id: str
    status: ProjectStatus


@dataclass(frozen=True)
class PortDetected:
    project_id: str
    port: int


@dataclass(frozen=True)
class ExitEvent:
    project_id: str
    code: int | None


Event = Union[OutputEvent, StatusChanged, PortDetected, ExitEvent]
Listener = Callable[[Event], None]


class Subscription:
    """Bounded per-consumer queue; the oldest event is dropped on overflow."""

    def __init__(self, bus: EventBus, *, maxsize: int, project_id: str | None = None) -> None:
        if maxsize < 1:
            raise ValueError(f"Invalid subscriber buffer size: {maxsize}")
        self._bus = bus
        # None marks the end of the stream once the subscription is closed.
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue(maxsize=maxsize)
        self._end_queued = False
        self.project_id = project_id
        self.dropped = 0
        self.closed = False

    def offer(self, event: Event) -> None:
        if self.closed:
            return
        if self.project_id is not None and event.project_id != self.project_id:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def get(self) -> Event | None:
        """Next event, or None once the subscription is closed and drained."""
        if self.closed and self._queue.empty():
            return None
        event = await self._queue.get()
        if event is None:
            self._end_queued = False
        return event

    def get_nowait(self) -> Event:
        event = self._queue.get_nowait()
        if event is None:
            self._end_queued = False
            raise asyncio.QueueEmpty
        return event

    def pending(self) -> int:
        return self._queue.qsize() - (1 if self._end_queued else 0)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus.unsubscribe(self)
        if not self._queue.full():
            self._queue.put_nowait(None)
            self._end_queued = True

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Event]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class EventBus:
    def __init__(self, *, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._listeners: list[Listener] = []
        self._subscriptions: list[Subscription] = []
        self._history: deque[Event] = deque(maxlen=history_size)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(
        self,
        *,
        project_id: str | None = None,
        maxsize: int = DEFAULT_SUBSCRIBER_BUFFER,
    ) -> Subscription:
        subscription = Subscription(self, maxsize=maxsize, project_id=project_id)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: Event) -> None:
        self._history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed event=%s", type(event).__name__)
        for subscription in list(self._subscriptions):
            subscription.offer(event)

    def history(self, project_id: str | None = None) -> list[Event]:
        if project_id is None:
            return list(self._history)
        return [event for event in self._history if event.project_id == project_id]

    def output(self, project_id: str, text: str) -> None:
        self.publish(OutputEvent(project_id=project_id, text=text))

    def status(self, project_id: str, status: ProjectStatus) -> None:
        self.publish(StatusChanged(project_id=project_id, status=status))

    def port(self, project_id: str, port: int) -> None:
        self.publish(PortDetected(project_id=project_id, port=port))

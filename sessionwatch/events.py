"""Ordered fan-out channel for session lifecycle events."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from sessionwatch.models import SessionEvent

logger = logging.getLogger("sessionwatch.events")

_CLOSED = object()


class Subscription:
    """One consumer's view of the channel. Iterate it with `async for`."""

    def __init__(self, channel: "LifecycleChannel", name: str):
        self.name = name
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()

    def _put(self, item: object) -> None:
        self._queue.put_nowait(item)

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    async def get(self) -> SessionEvent | None:
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[SessionEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event

    def close(self) -> None:
        self._channel.unsubscribe(self)


class LifecycleChannel:
    """Every subscriber receives every published event, in publication order."""

    def __init__(self) -> None:
        self._subscribers: list[Subscription] = []
        self._closed = False
        self.published = 0

    def subscribe(self, name: str = "subscriber") -> Subscription:
        subscription = Subscription(self, name)
        if self._closed:
            subscription._put(_CLOSED)
        else:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            subscription._put(_CLOSED)

    def publish(self, event: SessionEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s event for %s: channel closed", event.type, event.session.sessionId)
            return
        self.published += 1
        for subscription in self._subscribers:
            subscription._put(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscribers:
            subscription._put(_CLOSED)
        self._subscribers.clear()

"""In-memory async pub/sub for league snapshots.

The store publishes a LeagueSnapshot under its LeagueKey on every state
change; each observer gets its own asyncio.Queue. Subscriptions stay open
until the observer closes them or the store terminates the key (eviction,
logout), at which point iteration stops. The bus only holds subscriptions
weakly: an observer that cancels its iteration is unregistered at once, and
one that simply drops the subscription (a `break` out of `async for`) falls
out when it is collected.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections import defaultdict
from collections.abc import Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

_CLOSED = object()


class EventBus(Generic[K, T]):
    """Keyed async pub/sub.

    Usage:
        bus = EventBus()

        # Observer
        async with bus.subscribe(key) as sub:
            async for snapshot in sub:
                ...

        # Publisher
        bus.publish(key, snapshot)
    """

    def __init__(self) -> None:
        self._subscribers: dict[K, weakref.WeakSet[Subscription[K, T]]] = defaultdict(
            weakref.WeakSet
        )

    def publish(self, key: K, item: T) -> int:
        """Deliver ``item`` to every subscriber of ``key``.

        Returns the number of subscribers that received it.
        """
        count = 0
        for sub in list(self._subscribers.get(key, [])):
            if sub.push(item):
                count += 1
            else:
                logger.warning("event_bus_drop key=%s reason=slow_subscriber", key)
        return count

    def subscribe(self, key: K, max_size: int = 0) -> Subscription[K, T]:
        """Register a new subscription for ``key``. ``max_size=0`` means unbounded."""
        sub: Subscription[K, T] = Subscription(self, key, asyncio.Queue(maxsize=max_size))
        self._subscribers[key].add(sub)
        return sub

    def close(self, key: K) -> int:
        """Terminate every subscription of ``key``. Returns how many were closed."""
        subs = list(self._subscribers.pop(key, ()))
        for sub in subs:
            sub.terminate()
        return len(subs)

    def close_all(self) -> int:
        return sum(self.close(key) for key in list(self._subscribers))

    def _unregister(self, sub: Subscription[K, T]) -> None:
        subs = self._subscribers.get(sub.key)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.key]

    def has_subscribers(self, key: K) -> bool:
        return bool(self._subscribers.get(key))

    @property
    def subscriber_count(self) -> int:
        """Total number of active subscriptions."""
        return sum(len(subs) for subs in self._subscribers.values())


class Subscription(Generic[K, T]):
    """An active subscription. Async iterator; async context manager for cleanup."""

    def __init__(self, bus: EventBus[K, T], key: K, queue: asyncio.Queue[object]) -> None:
        self._bus = bus
        self._queue = queue
        self.key = key
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item: T) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            return False
        return True

    def terminate(self) -> None:
        """End the stream from the publisher side; pending items are still delivered."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Make room for the end marker; the dropped item is stale anyway.
            self._queue.get_nowait()
            self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        self.terminate()
        self._bus._unregister(self)

    async def __aenter__(self) -> Subscription[K, T]:
        return self

    async def __aexit__(self, *args: object) -> None:
        self.close()

    async def aclose(self) -> None:
        self.close()

    def __aiter__(self) -> Subscription[K, T]:
        return self

    async def __anext__(self) -> T:
        try:
            return await self._next()
        except asyncio.CancelledError:
            # The observer went away mid-iteration.
            self.close()
            raise

    async def _next(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the marker so later reads also stop.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def get(self, timeout: float | None = None) -> T | None:
        """Next item, or None on timeout or once the stream has ended."""
        try:
            return await asyncio.wait_for(self._next(), timeout=timeout)
        except (TimeoutError, StopAsyncIteration):
            return None

# aether/feed.py
"""
In-process change feed for live queries.

A Subscription pairs a topic with a loader (a function returning the current
ordered snapshot of some query). Writers call ChangeFeed.publish(topic) after
their transaction commits; every subscription on that topic re-runs its loader
and receives the full new snapshot. Delivery is at-least-once: a subscriber may
see the same snapshot twice but never a partial one.

Subscriptions can be consumed three ways:
  - callback=...  invoked synchronously in the publishing thread; snapshots are
                  not queued, so get() and async for are unavailable
  - get(timeout)  blocking read of the next snapshot
  - async for     asynchronous iteration (used by the WebSocket endpoints); the
                  first iteration binds the subscription to the running loop and
                  deliveries from any thread are handed over with
                  call_soon_threadsafe, so no executor thread is held while idle

unsubscribe() stops further deliveries, is idempotent, and wakes any pending
reader.
"""

import asyncio
import queue
import threading
from typing import Any, Callable, Dict, List, Optional, Set

from aether import monitoring

Loader = Callable[[], Any]
Callback = Callable[[Any], None]

_CLOSED = object()


class Subscription:
    def __init__(self, feed: "ChangeFeed", topic: str, loader: Loader,
                 callback: Optional[Callback] = None):
        self.topic = topic
        self._feed = feed
        self._loader = loader
        self._callback = callback
        self._queue: "queue.Queue[Any]" = queue.Queue()
        # set on first async iteration
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._async_queue: Optional["asyncio.Queue[Any]"] = None
        self._closed = False
        # re-entrant: a callback may unsubscribe from inside a delivery
        self._lock = threading.RLock()

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self):
        with self._lock:
            if self._closed:
                return
            try:
                snapshot = self._loader()
            except Exception:
                monitoring.logger.exception("Snapshot load failed", extra={"topic": self.topic})
                return
            if self._callback is None:
                self._put(snapshot)
                return
            try:
                self._callback(snapshot)
            except Exception:
                monitoring.logger.exception("Subscriber callback failed", extra={"topic": self.topic})

    def unsubscribe(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._feed._remove(self)
        with self._lock:
            self._put(_CLOSED)

    def _put(self, item: Any):
        # caller holds self._lock
        if self._async_queue is None:
            self._queue.put(item)
            return
        try:
            self._loop.call_soon_threadsafe(self._async_queue.put_nowait, item)
        except RuntimeError:
            # loop already closed; nobody is left to read
            monitoring.logger.debug("Dropped snapshot for closed loop", extra={"topic": self.topic})

    def _bind_loop(self):
        with self._lock:
            if self._async_queue is not None:
                return
            self._loop = asyncio.get_running_loop()
            self._async_queue = asyncio.Queue()
            # move anything delivered before the first iteration
            while True:
                try:
                    item = self._queue.get_nowait()
                except queue.Empty:
                    break
                self._async_queue.put_nowait(item)

    def get(self, timeout: Optional[float] = None) -> Optional[Any]:
        """
        Next snapshot, blocking up to `timeout` seconds (queue.Empty on timeout).
        Returns None once the subscription is closed.
        """
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            self._queue.put(_CLOSED)
            return None
        return item

    def latest(self, timeout: Optional[float] = None) -> Optional[Any]:
        """Wait for one snapshot, then skip ahead to the newest already queued."""
        snapshot = self.get(timeout=timeout)
        while snapshot is not None:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                break
            snapshot = item
        return snapshot

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()

    def __aiter__(self):
        return self

    async def __anext__(self):
        self._bind_loop()
        item = await self._async_queue.get()
        if item is _CLOSED:
            self._async_queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item


class ChangeFeed:
    def __init__(self):
        self._subs: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, loader: Loader, callback: Optional[Callback] = None) -> Subscription:
        """Register a live query; the current snapshot is delivered immediately."""
        sub = Subscription(self, topic, loader, callback)
        with self._lock:
            self._subs.setdefault(topic, set()).add(sub)
        monitoring.set_active_subscriptions(self.count())
        sub._deliver()
        return sub

    def publish(self, topic: str):
        with self._lock:
            subs: List[Subscription] = list(self._subs.get(topic, ()))
        for sub in subs:
            sub._deliver()

    def count(self) -> int:
        with self._lock:
            return sum(len(s) for s in self._subs.values())

    def _remove(self, sub: Subscription):
        with self._lock:
            subs = self._subs.get(sub.topic)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    self._subs.pop(sub.topic, None)
        monitoring.set_active_subscriptions(self.count())

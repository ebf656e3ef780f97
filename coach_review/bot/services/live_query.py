# bot/services/live_query.py
"""In-process change feed for live queries.

A subscriber registers a *loader* (an async callable returning the current
result) under a ``(topic, key)`` pair. The hub runs the loader once at
subscribe time and again whenever a writer publishes a change for that
topic, and hands every full result to the subscriber's callback. Callbacks
therefore always see complete snapshots, never deltas. Publishing only
schedules the refresh; loaders and callbacks run in background tasks.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Hashable, Optional

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]
OnChange = Callable[[Any], Awaitable[None] | None]
Unsubscribe = Callable[[], None]

SUBMISSIONS_TOPIC = "submissions"


def comments_topic(submission_id: Any) -> str:
    return f"comments:{submission_id}"


@dataclass(eq=False)
class _Subscription:
    sid: int
    topic: str
    key: Optional[Hashable]
    loader: Loader
    on_change: OnChange
    active: bool = True
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    dirty: bool = False
    pump: Optional[asyncio.Task] = None


class LiveQueryHub:
    """Singleton registry of live subscriptions."""

    _instance: ClassVar[Optional["LiveQueryHub"]] = None

    def __new__(cls) -> "LiveQueryHub":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return
        self._subs: dict[int, _Subscription] = {}
        self._ids = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()
        self._initialized = True

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    async def subscribe(
        self,
        topic: str,
        loader: Loader,
        on_change: OnChange,
        *,
        key: Optional[Hashable] = None,
    ) -> Unsubscribe:
        """
        Register a live query and deliver its initial result.

        ``key`` narrows delivery: a keyed subscription only reacts to publishes
        with the same key (or with no key). The returned callable is idempotent;
        once called, no further callbacks happen for this subscription.
        """
        sub = _Subscription(next(self._ids), topic, key, loader, on_change)
        self._subs[sub.sid] = sub
        logger.debug("live query #%s subscribed to %s key=%s", sub.sid, topic, key)

        def _unsubscribe() -> None:
            sub.active = False
            if self._subs.pop(sub.sid, None) is not None:
                logger.debug("live query #%s unsubscribed from %s", sub.sid, topic)

        await self._deliver(sub)
        return _unsubscribe

    async def publish(self, topic: str, key: Optional[Hashable] = None) -> int:
        """
        Schedule a refresh of every matching live query and return how many were
        scheduled. Delivery runs in background tasks, so a writer never waits on
        its listeners.
        """
        targets = [
            sub for sub in list(self._subs.values())
            if sub.topic == topic and (key is None or sub.key is None or sub.key == key)
        ]
        for sub in targets:
            self._schedule(sub)
        if targets:
            logger.debug("published %s key=%s to %d live queries", topic, key, len(targets))
        return len(targets)

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, sub: _Subscription) -> None:
        # a burst of publishes collapses into one pending refresh per subscription
        sub.dirty = True
        if sub.pump is not None and not sub.pump.done():
            return
        sub.pump = asyncio.create_task(self._pump(sub), name=f"live-query-{sub.sid}")
        self._tasks.add(sub.pump)
        sub.pump.add_done_callback(self._tasks.discard)

    async def _pump(self, sub: _Subscription) -> None:
        while sub.dirty and sub.active:
            sub.dirty = False
            await self._deliver(sub)

    async def _deliver(self, sub: _Subscription) -> None:
        # one delivery at a time per subscription keeps snapshots in order
        async with sub.lock:
            if not sub.active:
                return
            try:
                result = await sub.loader()
            except Exception:
                logger.exception("live query #%s loader failed for %s", sub.sid, sub.topic)
                return
            if not sub.active:
                return
            try:
                outcome = sub.on_change(result)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception("live query #%s callback failed for %s", sub.sid, sub.topic)

    def clear(self) -> None:
        for sub in self._subs.values():
            sub.active = False
        self._subs.clear()
        self._tasks.clear()

"""Request-deduplicating cache of live feeds.

Every key owns at most one upstream subscription, shared by all of its current
subscribers. Values are kept after the last subscriber leaves: the upstream stays
open for a short keep-alive window, the value itself until the gc window expires.
Keys are tuples so invalidation can target a whole prefix, e.g. every key of one
user.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from packages import config
from packages.error_reporting import report_upstream_failure
from packages.feeds import Feed, OnError, OnNext, Subscription
from packages.metrics import gauge_add, inc
from packages.request_context import feed_context, format_key

logger = logging.getLogger("fitness.cache")

CacheKey = Tuple[str, ...]
KEY_ROOT = "profile"
UPSTREAM_GAUGE = "profile_cache_upstream_active"
SUBSCRIBER_GAUGE = "profile_cache_subscribers"
TIMERS = ("keep_alive_timer", "gc_timer", "stale_timer", "retry_timer")


class ProfileKeys:
    @staticmethod
    def all() -> CacheKey:
        return (KEY_ROOT,)

    @staticmethod
    def user(user_id: str) -> CacheKey:
        return (KEY_ROOT, user_id)

    @staticmethod
    def weekly(user_id: str) -> CacheKey:
        return (KEY_ROOT, user_id, "weekly")

    @staticmethod
    def challenges(user_id: str) -> CacheKey:
        return (KEY_ROOT, user_id, "challenges")


def matches(key: CacheKey, prefix: CacheKey) -> bool:
    return key[: len(prefix)] == prefix


@dataclass(frozen=True)
class CachePolicy:
    stale_seconds: float
    gc_seconds: float = 600.0
    keep_alive_seconds: float = 5.0
    retries: int = 2
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0

    @classmethod
    def from_config(cls, stale_seconds: float) -> "CachePolicy":
        return cls(
            stale_seconds=stale_seconds,
            gc_seconds=config.CACHE_GC_SECONDS,
            keep_alive_seconds=config.CACHE_KEEP_ALIVE_SECONDS,
            retries=config.UPSTREAM_MAX_RETRIES,
            backoff_base_seconds=config.UPSTREAM_BACKOFF_BASE_SEC,
            backoff_max_seconds=config.UPSTREAM_BACKOFF_MAX_SEC,
        )

    def backoff(self, attempt: int) -> float:
        return min(self.backoff_max_seconds, self.backoff_base_seconds * (2 ** attempt))


@dataclass(eq=False)
class CacheEntry:
    key: CacheKey
    feed: Feed
    policy: CachePolicy
    value: Any = None
    has_value: bool = False
    updated_at: Optional[float] = None
    updates: int = 0
    error: Optional[BaseException] = None
    subscribers: Dict[int, Tuple[OnNext, OnError]] = field(default_factory=dict)
    upstream: Optional[Subscription] = None
    generation: int = 0
    refreshing: bool = False
    invalidated: bool = False
    attempts: int = 0
    waiters: List[asyncio.Future] = field(default_factory=list)
    keep_alive_timer: Optional[asyncio.TimerHandle] = None
    gc_timer: Optional[asyncio.TimerHandle] = None
    stale_timer: Optional[asyncio.TimerHandle] = None
    retry_timer: Optional[asyncio.TimerHandle] = None

    @property
    def subscriber_count(self) -> int:
        return len(self.subscribers)

    @property
    def in_flight(self) -> bool:
        return self.refreshing or self.retry_timer is not None

    def is_stale(self, now: float) -> bool:
        return self.updated_at is None or now - self.updated_at >= self.policy.stale_seconds

    def servable(self, now: float) -> bool:
        if not self.has_value or self.error is not None or self.invalidated or self.in_flight:
            return False
        return not self.is_stale(now)


class SubscriptionCache:
    def __init__(self):
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._ids = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def entry(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def peek(self, key: CacheKey) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry is not None and entry.has_value else None

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def _entry_for(self, key: CacheKey, feed: Feed, policy: CachePolicy) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, feed=feed, policy=policy)
            self._entries[key] = entry
            inc("profile_cache_entries_created_total")
        return entry

    # Subscribers

    def subscribe(
        self, key: CacheKey, feed: Feed, policy: CachePolicy, on_next: OnNext, on_error: OnError
    ) -> Subscription:
        entry = self._entry_for(key, feed, policy)
        self._cancel_timer(entry, "keep_alive_timer")
        self._cancel_timer(entry, "gc_timer")
        subscriber_id = next(self._ids)
        entry.subscribers[subscriber_id] = (on_next, on_error)
        gauge_add(SUBSCRIBER_GAUGE, 1)
        if entry.has_value:
            inc("profile_cache_hits_total")
            on_next(entry.value)
        else:
            inc("profile_cache_misses_total")
        self._ensure_fresh(entry)
        return Subscription(lambda: self._release(entry, subscriber_id))

    async def fetch_once(self, key: CacheKey, feed: Feed, policy: CachePolicy) -> Any:
        """Resolve with the first value delivered for ``key`` and release the slot.

        A cached value is accepted only while it is servable; a stale, invalidated or
        failed one is skipped and the fetch waits for the refresh.
        """
        future = asyncio.get_running_loop().create_future()
        handle: Optional[Subscription] = None
        entry = self._entry_for(key, feed, policy)
        accept_cached = entry.servable(self._now())
        seen_updates = entry.updates

        def release():
            if handle is not None:
                handle.unsubscribe()

        def on_next(value):
            if not accept_cached and entry.updates == seen_updates:
                return
            if not future.done():
                future.set_result(value)
            release()

        def on_error(exc):
            if not future.done():
                future.set_exception(exc)
            release()

        handle = self.subscribe(key, feed, policy, on_next, on_error)
        if future.done():
            handle.unsubscribe()
        try:
            return await future
        finally:
            handle.unsubscribe()

    async def prefetch(self, key: CacheKey, feed: Feed, policy: CachePolicy) -> None:
        """Populate ``key`` without registering a subscriber. Failures are logged, not raised."""
        entry = self._entry_for(key, feed, policy)
        if not entry.subscribers:
            self._schedule_idle(entry)
        self._ensure_fresh(entry)
        if not entry.in_flight:
            return
        waiter = asyncio.get_running_loop().create_future()
        entry.waiters.append(waiter)
        try:
            await waiter
        except Exception as exc:
            inc("profile_prefetch_failures_total")
            with feed_context(key):
                logger.warning("prefetch failed: %s", exc)

    def _release(self, entry: CacheEntry, subscriber_id: int) -> None:
        if entry.subscribers.pop(subscriber_id, None) is None:
            return
        gauge_add(SUBSCRIBER_GAUGE, -1)
        if entry.subscribers or self._entries.get(entry.key) is not entry:
            return
        self._schedule_idle(entry)

    # Invalidation

    def invalidate(self, prefix: CacheKey) -> int:
        matched = [entry for key, entry in self._entries.items() if matches(key, prefix)]
        for entry in matched:
            if entry.in_flight:
                continue
            entry.invalidated = True
            self._cancel_timer(entry, "stale_timer")
            if entry.subscribers:
                self._open_upstream(entry)
            else:
                self._close_upstream(entry)
        inc("profile_cache_invalidations_total")
        logger.info("invalidated %d cache entries prefix=%s", len(matched), format_key(prefix))
        return len(matched)

    def clear(self) -> None:
        for entry in list(self._entries.values()):
            self._drop(entry)

    # Upstream lifecycle

    def _ensure_fresh(self, entry: CacheEntry) -> None:
        if entry.in_flight:
            return
        if entry.servable(self._now()):
            self._schedule_stale_check(entry)
            return
        if entry.has_value:
            inc("profile_cache_background_refresh_total")
        self._open_upstream(entry)

    def _open_upstream(self, entry: CacheEntry) -> None:
        self._close_upstream(entry)
        generation = entry.generation
        entry.refreshing = True
        entry.invalidated = False
        inc("profile_cache_upstream_opened_total")
        with feed_context(entry.key):
            logger.info("opening upstream %s attempt=%d", entry.feed.name, entry.attempts + 1)
            handle = entry.feed.subscribe(
                lambda value: self._on_value(entry, generation, value),
                lambda exc: self._on_error(entry, generation, exc),
            )
        if entry.generation != generation:
            # Failed or closed while subscribing.
            handle.unsubscribe()
            return
        entry.upstream = handle
        gauge_add(UPSTREAM_GAUGE, 1)

    def _close_upstream(self, entry: CacheEntry) -> None:
        # Callbacks still in flight from the closed run are ignored from now on.
        entry.generation += 1
        entry.refreshing = False
        upstream, entry.upstream = entry.upstream, None
        if upstream is not None:
            gauge_add(UPSTREAM_GAUGE, -1)
            upstream.unsubscribe()

    def _on_value(self, entry: CacheEntry, generation: int, value: Any) -> None:
        if generation != entry.generation:
            return
        entry.value = value
        entry.has_value = True
        entry.updated_at = self._now()
        entry.updates += 1
        entry.error = None
        entry.refreshing = False
        entry.attempts = 0
        self._cancel_timer(entry, "stale_timer")
        self._resolve_waiters(entry, None)
        inc("profile_cache_updates_total")
        with feed_context(entry.key):
            logger.debug("value updated subscribers=%d", entry.subscriber_count)
            for subscriber_id, (on_next, _) in list(entry.subscribers.items()):
                if subscriber_id in entry.subscribers:
                    on_next(value)
        if generation != entry.generation:
            return
        if entry.subscribers:
            # Restart the live feed once the value goes stale, even while it stays open.
            self._schedule_stale_check(entry)
        elif entry.keep_alive_timer is None:
            self._close_upstream(entry)

    def _on_error(self, entry: CacheEntry, generation: int, exc: BaseException) -> None:
        if generation != entry.generation:
            return
        self._close_upstream(entry)
        wanted = entry.subscribers or entry.waiters
        with feed_context(entry.key):
            if wanted and entry.attempts < entry.policy.retries:
                delay = entry.policy.backoff(entry.attempts)
                entry.attempts += 1
                inc("profile_cache_retries_total")
                logger.warning(
                    "upstream failed, retry %d/%d in %.2fs: %s",
                    entry.attempts,
                    entry.policy.retries,
                    delay,
                    exc,
                )
                entry.retry_timer = asyncio.get_running_loop().call_later(delay, self._retry, entry)
                return
            entry.attempts = 0
            entry.error = exc
            inc("profile_cache_failures_total")
            logger.error("upstream failed: %s", exc)
            report_upstream_failure(exc, format_key(entry.key))
            self._resolve_waiters(entry, exc)
            for subscriber_id, (_, on_error) in list(entry.subscribers.items()):
                if subscriber_id in entry.subscribers:
                    on_error(exc)

    def _retry(self, entry: CacheEntry) -> None:
        entry.retry_timer = None
        if self._entries.get(entry.key) is not entry:
            return
        if not (entry.subscribers or entry.waiters):
            return
        self._open_upstream(entry)

    # Timers

    def _schedule_stale_check(self, entry: CacheEntry) -> None:
        if entry.stale_timer is not None or not entry.subscribers:
            return
        delay = max(0.0, entry.updated_at + entry.policy.stale_seconds - self._now())
        entry.stale_timer = asyncio.get_running_loop().call_later(delay, self._on_stale, entry)

    def _on_stale(self, entry: CacheEntry) -> None:
        entry.stale_timer = None
        if self._entries.get(entry.key) is entry and entry.subscribers:
            self._ensure_fresh(entry)

    def _schedule_idle(self, entry: CacheEntry) -> None:
        loop = asyncio.get_running_loop()
        for name in ("keep_alive_timer", "gc_timer", "stale_timer"):
            self._cancel_timer(entry, name)
        entry.keep_alive_timer = loop.call_later(
            entry.policy.keep_alive_seconds, self._keep_alive_expired, entry
        )
        entry.gc_timer = loop.call_later(entry.policy.gc_seconds, self._gc_expired, entry)

    def _keep_alive_expired(self, entry: CacheEntry) -> None:
        entry.keep_alive_timer = None
        if entry.subscribers or entry.refreshing:
            return
        if entry.upstream is not None:
            with feed_context(entry.key):
                logger.debug("keep-alive expired, releasing upstream")
        self._close_upstream(entry)

    def _gc_expired(self, entry: CacheEntry) -> None:
        entry.gc_timer = None
        if entry.subscribers or self._entries.get(entry.key) is not entry:
            return
        with feed_context(entry.key):
            logger.debug("dropping idle cache entry")
        self._drop(entry)

    def _drop(self, entry: CacheEntry) -> None:
        for name in TIMERS:
            self._cancel_timer(entry, name)
        self._close_upstream(entry)
        self._resolve_waiters(entry, None)
        if entry.subscribers:
            gauge_add(SUBSCRIBER_GAUGE, -len(entry.subscribers))
            entry.subscribers.clear()
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

    @staticmethod
    def _cancel_timer(entry: CacheEntry, name: str) -> None:
        timer = getattr(entry, name)
        if timer is not None:
            timer.cancel()
            setattr(entry, name, None)

    @staticmethod
    def _resolve_waiters(entry: CacheEntry, exc: Optional[BaseException]) -> None:
        waiters, entry.waiters = entry.waiters, []
        for waiter in waiters:
            if waiter.done():
                continue
            if exc is None:
                waiter.set_result(None)
            else:
                waiter.set_exception(exc)

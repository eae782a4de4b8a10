"""Live feeds: restartable, cancelable streams of full result sets.

A ``Feed`` does nothing until subscribed; every ``subscribe`` starts a fresh run
and returns a ``Subscription`` whose ``unsubscribe`` is synchronous and idempotent.
Emissions are full snapshots, so consumers never merge deltas.
"""
from __future__ import annotations

import itertools
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")
U = TypeVar("U")

OnNext = Callable[[Any], None]
OnError = Callable[[BaseException], None]
Start = Callable[[OnNext, OnError], Optional["Subscription"]]

_MISSING = object()


class Subscription:
    def __init__(self, release: Optional[Callable[[], None]] = None):
        self._release = release
        self.closed = False

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        release, self._release = self._release, None
        if release is not None:
            release()


class Relay:
    """Holds the upstream of one running subscription.

    Callbacks may fire before ``subscribe`` has returned a handle; ``stop`` called
    that early is applied as soon as the handle is attached.
    """

    def __init__(self):
        self.upstream: Optional[Subscription] = None
        self.stopped = False

    def attach(self, upstream: Subscription) -> Subscription:
        self.upstream = upstream
        if self.stopped:
            upstream.unsubscribe()
        return upstream

    def stop(self) -> None:
        self.stopped = True
        if self.upstream is not None:
            self.upstream.unsubscribe()


class Feed(Generic[T]):
    def __init__(self, start: Start, name: str = "feed"):
        self._start = start
        self.name = name

    def __repr__(self) -> str:
        return f"Feed({self.name!r})"

    def subscribe(self, on_next: OnNext, on_error: OnError) -> Subscription:
        upstream = self._start(on_next, on_error)
        return upstream if upstream is not None else Subscription()

    def map(self, fn: Callable[[T], U], name: Optional[str] = None) -> "Feed[U]":
        """Derive a feed; an exception raised by ``fn`` ends the run on ``on_error``."""

        def start(on_next: OnNext, on_error: OnError) -> Subscription:
            relay = Relay()

            def forward(value):
                if relay.stopped:
                    return
                try:
                    mapped = fn(value)
                except Exception as exc:
                    relay.stop()
                    on_error(exc)
                    return
                on_next(mapped)

            def fail(exc: BaseException):
                if relay.stopped:
                    return
                relay.stop()
                on_error(exc)

            relay.attach(self.subscribe(forward, fail))
            return Subscription(relay.stop)

        return Feed(start, name=name or f"{self.name}.map")


class FeedSubject(Generic[T]):
    """Multicast source driven by hand: ``emit`` a snapshot or ``fail`` the feed.

    Counts subscriptions so callers can assert how many upstream runs were opened
    and released. With ``replay`` a new subscriber synchronously receives the latest
    emitted value, the way document-store snapshot listeners behave.
    """

    def __init__(self, name: str = "subject", replay: bool = False):
        self.name = name
        self._replay = replay
        self._observers: Dict[int, Tuple[OnNext, OnError]] = {}
        self._ids = itertools.count()
        self._latest: Any = _MISSING
        self.subscribe_count = 0
        self.unsubscribe_count = 0

    @property
    def active_count(self) -> int:
        return len(self._observers)

    def feed(self) -> Feed[T]:
        return Feed(self._start, name=self.name)

    def _start(self, on_next: OnNext, on_error: OnError) -> Subscription:
        self.subscribe_count += 1
        observer_id = next(self._ids)
        self._observers[observer_id] = (on_next, on_error)
        if self._replay and self._latest is not _MISSING:
            on_next(self._latest)
        return Subscription(lambda: self._drop(observer_id))

    def _drop(self, observer_id: int) -> None:
        if self._observers.pop(observer_id, None) is not None:
            self.unsubscribe_count += 1

    def emit(self, value: T) -> None:
        self._latest = value
        for on_next, _ in list(self._observers.values()):
            on_next(value)

    def fail(self, exc: BaseException) -> None:
        observers = list(self._observers.values())
        self._observers.clear()
        for _, on_error in observers:
            on_error(exc)

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from packages.feeds import Feed, OnError, OnNext, Subscription

logger = logging.getLogger("fitness.stores")


@dataclass
class _Watch:
    user_id: str
    run: Callable[[], List]
    on_next: OnNext
    on_error: OnError
    loop: asyncio.AbstractEventLoop
    pending: bool = False
    task: Optional[asyncio.Task] = None


class LiveQueries:
    """Snapshot listeners over a store that has no change feed of its own.

    Each watch re-runs its query after any write for the same user and pushes the
    full current result set. Queries run in a worker thread and results are delivered
    on the subscriber's loop, never inline. Writes that land while a query is queued
    or running collapse into one more run.
    """

    def __init__(self, name: str):
        self.name = name
        self._watches: Dict[int, _Watch] = {}
        self._ids = itertools.count()

    @property
    def active_count(self) -> int:
        return len(self._watches)

    def feed(self, user_id: str, run: Callable[[], List], name: str) -> Feed:
        def start(on_next: OnNext, on_error: OnError) -> Subscription:
            watch_id = next(self._ids)
            self._watches[watch_id] = _Watch(
                user_id, run, on_next, on_error, asyncio.get_running_loop()
            )
            self._schedule(watch_id)
            return Subscription(lambda: self._watches.pop(watch_id, None))

        return Feed(start, name=name)

    def notify(self, user_id: str) -> None:
        for watch_id, watch in list(self._watches.items()):
            if watch.user_id == user_id:
                self._schedule(watch_id)

    def _schedule(self, watch_id: int) -> None:
        watch = self._watches.get(watch_id)
        if watch is None:
            return
        watch.pending = True
        if watch.task is None:
            watch.task = watch.loop.create_task(self._deliver(watch_id, watch))

    async def _deliver(self, watch_id: int, watch: _Watch) -> None:
        try:
            while watch.pending and watch_id in self._watches:
                watch.pending = False
                try:
                    rows = await asyncio.to_thread(watch.run)
                except Exception as exc:
                    if self._watches.pop(watch_id, None) is None:
                        return
                    logger.warning("%s live query failed for user %s: %s", self.name, watch.user_id, exc)
                    watch.on_error(exc)
                    return
                # Unsubscribed while the query was running.
                if watch_id not in self._watches:
                    return
                watch.on_next(rows)
        finally:
            watch.task = None

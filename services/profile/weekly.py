from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, tzinfo
from typing import Callable, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from packages import config
from packages.errors import WEEKLY_FAILED, UpstreamQueryFailure
from packages.feeds import Feed, OnError, OnNext, Relay, Subscription
from packages.models import DAYS_IN_WEEK, ActivityEntry, WeeklyHistogram

logger = logging.getLogger("fitness.profile")

WEEKDAY_LABELS = ("Mo", "Tu", "We", "Th", "Fr", "Sa", "Su")


def day_boundaries(now: datetime) -> List[datetime]:
    """Local midnights of the last seven days, oldest first; the last one is today."""
    today = now.date()
    return [
        datetime.combine(today - timedelta(days=offset), time.min, tzinfo=now.tzinfo)
        for offset in range(DAYS_IN_WEEK - 1, -1, -1)
    ]


def day_labels(boundaries: Sequence[datetime]) -> tuple:
    return tuple(WEEKDAY_LABELS[boundary.weekday()] for boundary in boundaries)


def bucket_index(timestamp: datetime, boundaries: Sequence[datetime]) -> Optional[int]:
    for index in range(len(boundaries) - 1, -1, -1):
        if timestamp >= boundaries[index]:
            return index
    return None


def build_histogram(
    entries: Iterable[ActivityEntry],
    boundaries: Sequence[datetime],
    until: Optional[datetime] = None,
) -> WeeklyHistogram:
    """Sum distances per day. Entries after ``until`` (future-dated ones) are left out."""
    totals = [0.0] * DAYS_IN_WEEK
    for entry in entries:
        if until is not None and entry.timestamp > until:
            continue
        index = bucket_index(entry.timestamp, boundaries)
        if index is None:
            continue
        totals[index] += entry.distance_meters / 1000
    return WeeklyHistogram(day_labels=day_labels(boundaries), day_totals_km=tuple(totals))


def local_now(tz: Optional[tzinfo] = None) -> datetime:
    return datetime.now(tz or ZoneInfo(config.TIMEZONE))


class WeeklyAggregator:
    """Rolls a user's live activity entries into a 7-bucket daily histogram."""

    def __init__(self, activity_store, clock: Optional[Callable[[], datetime]] = None):
        self._store = activity_store
        self._clock = clock or local_now

    def feed(self, user_id: str) -> Feed[WeeklyHistogram]:
        def start(on_next: OnNext, on_error: OnError) -> Subscription:
            boundaries = day_boundaries(self._clock())
            relay = Relay()
            logger.info("subscribing to weekly activity user=%s since=%s", user_id, boundaries[0].isoformat())

            def on_entries(entries: List[ActivityEntry]):
                if relay.stopped:
                    return
                histogram = build_histogram(entries, boundaries, until=self._clock())
                logger.debug(
                    "weekly activity updated user=%s entries=%d total_km=%.2f",
                    user_id,
                    len(entries),
                    histogram.total_km,
                )
                on_next(histogram)

            def on_feed_error(exc: BaseException):
                if relay.stopped:
                    return
                relay.stop()
                logger.error("weekly activity feed failed user=%s: %s", user_id, exc)
                on_error(UpstreamQueryFailure("weekly activity", user_id, exc, code=WEEKLY_FAILED))

            upstream = self._store.watch_activity(user_id, boundaries[0], None)
            relay.attach(upstream.subscribe(on_entries, on_feed_error))
            return Subscription(relay.stop)

        return Feed(start, name=f"weekly:{user_id}")

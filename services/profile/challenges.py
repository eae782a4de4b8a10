from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from packages.errors import CHALLENGES_FAILED, PartialAggregationFailure, UpstreamQueryFailure
from packages.feeds import Feed, OnError, OnNext, Relay, Subscription
from packages.metrics import inc
from packages.models import ChallengeMembership, ChallengeProgress

logger = logging.getLogger("fitness.profile")


class ChallengeProgressCalculator:
    """Joined challenges of a user, each with progress summed over its own window.

    Progress stays in meters so it compares directly with ``target_distance``.
    Completed challenges short-circuit to 0 without querying activity.
    """

    def __init__(self, activity_store, membership_store):
        self.activity_store = activity_store
        self.membership_store = membership_store

    async def progress_for(self, user_id: str, membership: ChallengeMembership) -> float:
        if membership.is_completed:
            return 0.0
        inc("challenge_progress_queries_total")
        try:
            entries = await self.activity_store.fetch_activity(
                user_id, membership.start_date, membership.end_date
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise PartialAggregationFailure(user_id, membership.challenge_id, exc) from exc
        return sum(entry.distance_meters for entry in entries)

    async def compute(
        self, user_id: str, memberships: Sequence[ChallengeMembership]
    ) -> List[ChallengeProgress]:
        ordered = sorted(memberships, key=lambda m: m.joined_at, reverse=True)
        tasks = [asyncio.ensure_future(self.progress_for(user_id, m)) for m in ordered]
        try:
            progress = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return [
            ChallengeProgress(membership=m, calculated_progress=value)
            for m, value in zip(ordered, progress)
        ]

    def feed(self, user_id: str) -> Feed[List[ChallengeProgress]]:
        def start(on_next: OnNext, on_error: OnError) -> Subscription:
            return _ChallengeRun(self, user_id, on_next, on_error).start()

        return Feed(start, name=f"challenges:{user_id}")


class _ChallengeRun:
    """One subscription: recomputes progress for every membership emission.

    A newer membership list supersedes a pending computation, so results are never
    delivered out of order.
    """

    def __init__(self, calculator: ChallengeProgressCalculator, user_id: str, on_next: OnNext, on_error: OnError):
        self.calculator = calculator
        self.user_id = user_id
        self.on_next = on_next
        self.on_error = on_error
        self.relay = Relay()
        self.pending: Optional[asyncio.Task] = None

    def start(self) -> Subscription:
        logger.info("subscribing to joined challenges user=%s", self.user_id)
        upstream = self.calculator.membership_store.watch_memberships(self.user_id)
        self.relay.attach(upstream.subscribe(self._on_memberships, self._on_feed_error))
        return Subscription(self.close)

    def close(self) -> None:
        self.relay.stop()
        self._cancel_pending()

    def _cancel_pending(self) -> None:
        if self.pending is not None and not self.pending.done():
            self.pending.cancel()
        self.pending = None

    def _on_memberships(self, memberships: List[ChallengeMembership]) -> None:
        if self.relay.stopped:
            return
        self._cancel_pending()
        task = asyncio.get_running_loop().create_task(self._deliver(list(memberships)))
        self.pending = task

    async def _deliver(self, memberships: List[ChallengeMembership]) -> None:
        try:
            result = await self.calculator.compute(self.user_id, memberships)
        except PartialAggregationFailure as exc:
            if self.relay.stopped:
                return
            self.pending = None
            inc("challenge_progress_failures_total")
            logger.error("challenge progress failed user=%s challenge=%s: %s", self.user_id, exc.challenge_id, exc.cause)
            self.on_error(exc)
            return
        except Exception as exc:
            if self.relay.stopped:
                return
            self.pending = None
            self.close()
            inc("challenge_progress_failures_total")
            logger.exception("challenge progress crashed user=%s", self.user_id)
            self.on_error(UpstreamQueryFailure("joined challenges", self.user_id, exc, code=CHALLENGES_FAILED))
            return
        if self.relay.stopped:
            return
        self.pending = None
        logger.debug("joined challenges updated user=%s count=%d", self.user_id, len(result))
        self.on_next(result)

    def _on_feed_error(self, exc: BaseException) -> None:
        if self.relay.stopped:
            return
        self.close()
        logger.error("joined challenges feed failed user=%s: %s", self.user_id, exc)
        self.on_error(UpstreamQueryFailure("joined challenges", self.user_id, exc, code=CHALLENGES_FAILED))

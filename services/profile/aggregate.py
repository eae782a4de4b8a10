from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from packages.errors import PROFILE_FAILED, ProfileError, UpstreamQueryFailure
from packages.feeds import Feed, OnError, OnNext, Relay, Subscription
from packages.models import ChallengeProgress, ProfileSnapshot, WeeklyHistogram

logger = logging.getLogger("fitness.profile")


@dataclass(frozen=True)
class MergeState:
    weekly: Optional[WeeklyHistogram] = None
    challenges: Optional[Tuple[ChallengeProgress, ...]] = None

    @property
    def ready(self) -> bool:
        return self.weekly is not None and self.challenges is not None

    def with_weekly(self, weekly: WeeklyHistogram) -> "MergeState":
        return replace(self, weekly=weekly)

    def with_challenges(self, challenges) -> "MergeState":
        return replace(self, challenges=tuple(challenges))


def merge(state: MergeState) -> Optional[ProfileSnapshot]:
    if not state.ready:
        return None
    return ProfileSnapshot(weekly_activity=state.weekly, challenges=state.challenges)


class ProfileAggregate:
    """Merges a weekly feed and a challenges feed into one snapshot feed.

    Nothing is emitted until both feeds delivered once; after that every update of
    either side re-emits a full snapshot reusing the other side's last value. An
    error from either side is forwarded and tears both down.
    """

    def __init__(self, weekly_aggregator, progress_calculator):
        self.weekly_aggregator = weekly_aggregator
        self.progress_calculator = progress_calculator

    def feed(self, user_id: str) -> Feed[ProfileSnapshot]:
        return combine(
            self.weekly_aggregator.feed(user_id),
            self.progress_calculator.feed(user_id),
            user_id=user_id,
        )


def combine(weekly_feed: Feed, challenges_feed: Feed, user_id: str = "-") -> Feed[ProfileSnapshot]:
    def start(on_next: OnNext, on_error: OnError) -> Subscription:
        state = MergeState()
        weekly_relay = Relay()
        challenges_relay = Relay()
        closed = False

        def close():
            nonlocal closed
            closed = True
            weekly_relay.stop()
            challenges_relay.stop()

        def publish(new_state: MergeState):
            nonlocal state
            if closed:
                return
            state = new_state
            snapshot = merge(state)
            if snapshot is None:
                logger.debug("profile waiting for both feeds user=%s", user_id)
                return
            on_next(snapshot)

        def fail(exc: BaseException):
            if closed:
                return
            close()
            if not isinstance(exc, ProfileError):
                exc = UpstreamQueryFailure("profile", user_id, exc, code=PROFILE_FAILED)
            logger.error("profile feed failed user=%s: %s", user_id, exc)
            on_error(exc)

        logger.info("subscribing to profile data user=%s", user_id)
        weekly_relay.attach(
            weekly_feed.subscribe(lambda weekly: publish(state.with_weekly(weekly)), fail)
        )
        if not closed:
            challenges_relay.attach(
                challenges_feed.subscribe(lambda items: publish(state.with_challenges(items)), fail)
            )
        return Subscription(close)

    return Feed(start, name=f"profile:{user_id}")

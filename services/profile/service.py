from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from packages import config
from packages.errors import InvalidActivity
from packages.feeds import OnError, OnNext, Subscription
from packages.models import (
    ActivityEntry,
    ChallengeMembership,
    ChallengeProgress,
    ProfileSnapshot,
    WeeklyHistogram,
    to_utc,
)
from services.stores.activity_store import SqliteActivityStore
from services.stores.membership_store import SqliteMembershipStore

from .aggregate import ProfileAggregate
from .cache import CacheKey, CachePolicy, ProfileKeys, SubscriptionCache
from .challenges import ChallengeProgressCalculator
from .weekly import WeeklyAggregator

logger = logging.getLogger("fitness.profile")


class DataKind(str, enum.Enum):
    PROFILE = "profile"
    WEEKLY = "weekly"
    CHALLENGES = "challenges"


@dataclass(frozen=True)
class InvalidationScope:
    prefix: CacheKey

    @classmethod
    def all(cls) -> "InvalidationScope":
        return cls(ProfileKeys.all())

    @classmethod
    def user(cls, user_id: str) -> "InvalidationScope":
        return cls(ProfileKeys.user(_require_user(user_id)))

    @classmethod
    def weekly(cls, user_id: str) -> "InvalidationScope":
        return cls(ProfileKeys.weekly(_require_user(user_id)))

    @classmethod
    def challenges(cls, user_id: str) -> "InvalidationScope":
        return cls(ProfileKeys.challenges(_require_user(user_id)))


def _require_user(user_id: Optional[str]) -> str:
    if not user_id or not str(user_id).strip():
        raise ValueError("user_id is required")
    return str(user_id)


def default_policies() -> Dict[DataKind, CachePolicy]:
    return {
        DataKind.PROFILE: CachePolicy.from_config(config.PROFILE_STALE_SECONDS),
        DataKind.WEEKLY: CachePolicy.from_config(config.WEEKLY_STALE_SECONDS),
        DataKind.CHALLENGES: CachePolicy.from_config(config.CHALLENGES_STALE_SECONDS),
    }


class ProfileService:
    """Entry point for screens: live views, one-shot reads, invalidation and prefetch
    of a user's weekly activity and joined challenges."""

    def __init__(
        self,
        activity_store,
        membership_store,
        cache: Optional[SubscriptionCache] = None,
        policies: Optional[Dict[DataKind, CachePolicy]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.activity_store = activity_store
        self.membership_store = membership_store
        self.cache = cache or SubscriptionCache()
        self.policies = policies or default_policies()
        self.weekly = WeeklyAggregator(activity_store, clock=clock)
        self.challenges = ChallengeProgressCalculator(activity_store, membership_store)
        self.aggregate = ProfileAggregate(self.weekly, self.challenges)

    def _source(self, kind: DataKind, user_id: str):
        user_id = _require_user(user_id)
        kind = DataKind(kind)
        if kind is DataKind.PROFILE:
            key, feed = ProfileKeys.user(user_id), self.aggregate.feed(user_id)
        elif kind is DataKind.WEEKLY:
            key, feed = ProfileKeys.weekly(user_id), self.weekly.feed(user_id)
        else:
            key, feed = ProfileKeys.challenges(user_id), self.challenges.feed(user_id).map(tuple)
        return key, feed, self.policies[kind]

    # Live views

    def subscribe(self, kind: DataKind, user_id: str, on_next: OnNext, on_error: OnError) -> Subscription:
        key, feed, policy = self._source(kind, user_id)
        return self.cache.subscribe(key, feed, policy, on_next, on_error)

    def subscribe_profile(self, user_id: str, on_snapshot: OnNext, on_error: OnError) -> Subscription:
        return self.subscribe(DataKind.PROFILE, user_id, on_snapshot, on_error)

    def subscribe_weekly(self, user_id: str, on_histogram: OnNext, on_error: OnError) -> Subscription:
        return self.subscribe(DataKind.WEEKLY, user_id, on_histogram, on_error)

    def subscribe_challenges(self, user_id: str, on_list: OnNext, on_error: OnError) -> Subscription:
        return self.subscribe(DataKind.CHALLENGES, user_id, on_list, on_error)

    # One-shot reads

    async def fetch_once(self, kind: DataKind, user_id: str) -> Any:
        key, feed, policy = self._source(kind, user_id)
        return await self.cache.fetch_once(key, feed, policy)

    async def fetch_profile_once(self, user_id: str) -> ProfileSnapshot:
        return await self.fetch_once(DataKind.PROFILE, user_id)

    async def fetch_weekly_once(self, user_id: str) -> WeeklyHistogram:
        return await self.fetch_once(DataKind.WEEKLY, user_id)

    async def fetch_challenges_once(self, user_id: str) -> tuple[ChallengeProgress, ...]:
        return await self.fetch_once(DataKind.CHALLENGES, user_id)

    # Cache control

    def invalidate(self, scope: InvalidationScope) -> int:
        return self.cache.invalidate(scope.prefix)

    async def prefetch(self, kind: DataKind, user_id: str) -> None:
        key, feed, policy = self._source(kind, user_id)
        logger.debug("prefetching %s user=%s", DataKind(kind).value, user_id)
        await self.cache.prefetch(key, feed, policy)

    # Mutations: write through the store, then invalidate.

    async def record_activity(
        self,
        user_id: str,
        distance_meters: float,
        duration_seconds: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> ActivityEntry:
        user_id = _require_user(user_id)
        if distance_meters is None or distance_meters <= 0:
            raise InvalidActivity("Distance must be greater than 0")
        if duration_seconds is not None and duration_seconds < 0:
            raise InvalidActivity("Duration must not be negative")
        entry = ActivityEntry(
            user_id=user_id,
            timestamp=to_utc(timestamp) if timestamp else datetime.now(timezone.utc),
            distance_meters=float(distance_meters),
            duration_seconds=duration_seconds,
        )
        saved = await self.activity_store.add_activity(entry)
        self.invalidate(InvalidationScope.user(user_id))
        return saved

    async def join_challenge(self, user_id: str, membership: ChallengeMembership) -> None:
        user_id = _require_user(user_id)
        await self.membership_store.add_membership(user_id, membership)
        self.invalidate(InvalidationScope.user(user_id))

    async def complete_challenge(self, user_id: str, membership_id: str, progress: float) -> bool:
        user_id = _require_user(user_id)
        updated = await self.membership_store.mark_completed(user_id, membership_id, progress)
        if updated:
            self.invalidate(InvalidationScope.user(user_id))
        return updated

    def close(self) -> None:
        self.cache.clear()


def build_profile_service(db_path=None) -> ProfileService:
    return ProfileService(SqliteActivityStore(db_path), SqliteMembershipStore(db_path))

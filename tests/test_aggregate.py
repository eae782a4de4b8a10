from datetime import datetime, timedelta, timezone

import pytest

from packages.errors import PROFILE_FAILED, ProfileError, UpstreamQueryFailure
from packages.feeds import Feed, FeedSubject
from packages.models import ChallengeMembership, ChallengeProgress, WeeklyHistogram
from services.profile.aggregate import MergeState, ProfileAggregate, combine, merge
from services.profile.challenges import ChallengeProgressCalculator
from services.profile.weekly import WeeklyAggregator
from tests.fixtures.memory_stores import MemoryActivityStore, MemoryMembershipStore
from tests.fixtures.timing import settle

LABELS = ("Mo", "Tu", "We", "Th", "Fr", "Sa", "Su")


def histogram(*totals):
    values = tuple(totals) + (0.0,) * (7 - len(totals))
    return WeeklyHistogram(day_labels=LABELS, day_totals_km=values)


def progress(membership_id):
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)
    membership = ChallengeMembership(
        id=membership_id,
        challenge_id=membership_id,
        title=membership_id,
        start_date=start,
        end_date=start + timedelta(days=7),
        joined_at=start,
    )
    return ChallengeProgress(membership=membership, calculated_progress=0.0)


def test_merge_waits_for_both_sides():
    assert merge(MergeState()) is None
    assert merge(MergeState().with_weekly(histogram(1.0))) is None
    assert merge(MergeState().with_challenges([])) is None
    snapshot = merge(MergeState().with_weekly(histogram(1.0)).with_challenges([]))
    assert snapshot.weekly_activity.total_km == 1.0
    assert snapshot.challenges == ()


def test_combine_emits_only_after_both_feeds_delivered():
    weekly, challenges = FeedSubject("weekly"), FeedSubject("challenges")
    seen = []
    combine(weekly.feed(), challenges.feed()).subscribe(seen.append, lambda exc: None)

    weekly.emit(histogram(1.0))
    assert seen == []
    challenges.emit([progress("a")])
    assert len(seen) == 1
    assert seen[0].weekly_activity.total_km == 1.0
    assert [item.id for item in seen[0].challenges] == ["a"]


def test_combine_reemits_with_latest_of_other_side():
    weekly, challenges = FeedSubject("weekly"), FeedSubject("challenges")
    seen = []
    combine(weekly.feed(), challenges.feed()).subscribe(seen.append, lambda exc: None)
    challenges.emit([progress("a")])
    weekly.emit(histogram(1.0))

    weekly.emit(histogram(2.0))
    assert [item.id for item in seen[-1].challenges] == ["a"]
    assert seen[-1].weekly_activity.total_km == 2.0

    challenges.emit([progress("b"), progress("a")])
    assert seen[-1].weekly_activity.total_km == 2.0
    assert [item.id for item in seen[-1].challenges] == ["b", "a"]
    assert len(seen) == 3


def test_unsubscribe_releases_both_feeds_once():
    weekly, challenges = FeedSubject("weekly"), FeedSubject("challenges")
    sub = combine(weekly.feed(), challenges.feed()).subscribe(lambda value: None, lambda exc: None)
    assert weekly.active_count == challenges.active_count == 1

    sub.unsubscribe()
    sub.unsubscribe()
    assert weekly.unsubscribe_count == 1
    assert challenges.unsubscribe_count == 1


def test_error_from_either_side_tears_down_both():
    weekly, challenges = FeedSubject("weekly"), FeedSubject("challenges")
    seen, errors = [], []
    combine(weekly.feed(), challenges.feed(), user_id="u1").subscribe(seen.append, errors.append)
    weekly.emit(histogram(1.0))

    failure = UpstreamQueryFailure("joined challenges", "u1", code="FETCH_CHALLENGES_FAILED")
    challenges.fail(failure)
    weekly.emit(histogram(5.0))

    assert errors == [failure]
    assert seen == []
    assert weekly.active_count == 0


def test_foreign_errors_are_wrapped():
    weekly, challenges = FeedSubject("weekly"), FeedSubject("challenges")
    errors = []
    combine(weekly.feed(), challenges.feed(), user_id="u1").subscribe(lambda value: None, errors.append)
    weekly.fail(RuntimeError("socket closed"))

    assert isinstance(errors[0], ProfileError)
    assert errors[0].code == PROFILE_FAILED
    assert challenges.active_count == 0


def test_synchronous_failure_skips_second_subscription():
    challenges = FeedSubject("challenges")

    def fail_fast(on_next, on_error):
        on_error(RuntimeError("offline"))

    errors = []
    combine(Feed(fail_fast, name="broken"), challenges.feed()).subscribe(lambda value: None, errors.append)
    assert len(errors) == 1
    assert challenges.subscribe_count == 0


@pytest.mark.asyncio
async def test_profile_aggregate_over_stores():
    now = datetime(2026, 3, 12, 15, 0, tzinfo=timezone.utc)
    activity = MemoryActivityStore()
    memberships = MemoryMembershipStore()
    aggregate = ProfileAggregate(
        WeeklyAggregator(activity, clock=lambda: now),
        ChallengeProgressCalculator(activity, memberships),
    )
    seen = []
    sub = aggregate.feed("u1").subscribe(seen.append, lambda exc: None)
    await settle()

    assert len(seen) == 1
    assert seen[0].challenges == ()
    assert seen[0].weekly_activity.day_totals_km == (0.0,) * 7
    sub.unsubscribe()
    assert activity.live.active_count == 0
    assert memberships.live.active_count == 0

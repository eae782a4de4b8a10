from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from packages.errors import WEEKLY_FAILED, UpstreamQueryFailure
from packages.models import ActivityEntry
from services.profile.weekly import WeeklyAggregator, bucket_index, build_histogram, day_boundaries
from tests.fixtures.memory_stores import MemoryActivityStore
from tests.fixtures.timing import settle

# Thursday afternoon.
NOW = datetime(2026, 3, 12, 15, 0, tzinfo=timezone.utc)


def entry(when, meters, user_id="u1"):
    return ActivityEntry(user_id=user_id, timestamp=when, distance_meters=meters)


def test_day_boundaries_cover_last_seven_local_days():
    boundaries = day_boundaries(NOW)
    assert len(boundaries) == 7
    assert boundaries[0] == datetime(2026, 3, 6, tzinfo=timezone.utc)
    assert boundaries[-1] == datetime(2026, 3, 12, tzinfo=timezone.utc)
    assert all(later - earlier == timedelta(days=1) for earlier, later in zip(boundaries, boundaries[1:]))


def test_labels_end_with_today():
    histogram = build_histogram([], day_boundaries(NOW))
    assert histogram.day_labels == ("Fr", "Sa", "Su", "Mo", "Tu", "We", "Th")
    assert histogram.day_totals_km == (0.0,) * 7


def test_bucket_index_edges():
    boundaries = day_boundaries(NOW)
    assert bucket_index(boundaries[0] - timedelta(microseconds=1), boundaries) is None
    assert bucket_index(boundaries[0], boundaries) == 0
    assert bucket_index(boundaries[6] - timedelta(minutes=1), boundaries) == 5
    assert bucket_index(boundaries[6], boundaries) == 6
    assert bucket_index(NOW + timedelta(hours=3), boundaries) == 6


def test_histogram_sums_entries_per_day():
    boundaries = day_boundaries(NOW)
    entries = [
        entry(datetime(2026, 3, 12, 7, 0, tzinfo=timezone.utc), 3000),
        entry(datetime(2026, 3, 12, 12, 0, tzinfo=timezone.utc), 2000),
        entry(datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc), 4000),
    ]
    histogram = build_histogram(entries, boundaries)
    assert histogram.day_totals_km == (0.0, 0.0, 0.0, 0.0, 4.0, 0.0, 5.0)
    assert histogram.total_km == pytest.approx(9.0)


def test_histogram_conserves_distance_inside_window():
    boundaries = day_boundaries(NOW)
    entries = [entry(boundaries[0] + timedelta(hours=5 * i), 1000 + 137 * i) for i in range(30)]
    entries.append(entry(boundaries[0] - timedelta(hours=1), 99999))
    histogram = build_histogram(entries, boundaries)
    expected = sum(e.distance_meters for e in entries[:-1]) / 1000
    assert sum(histogram.day_totals_km) == pytest.approx(expected)


def test_buckets_follow_local_days():
    now = datetime(2026, 3, 12, 15, 0, tzinfo=ZoneInfo("America/New_York"))
    boundaries = day_boundaries(now)
    # 03:00 UTC on the 12th is still the evening of the 11th in New York.
    late_run = entry(datetime(2026, 3, 12, 3, 0, tzinfo=timezone.utc), 5000)
    histogram = build_histogram([late_run], boundaries)
    assert histogram.day_totals_km[5] == pytest.approx(5.0)
    assert histogram.day_totals_km[6] == 0.0


@pytest.mark.asyncio
async def test_weekly_feed_tracks_store_updates():
    store = MemoryActivityStore([entry(datetime(2026, 3, 12, 7, 0, tzinfo=timezone.utc), 3000)])
    aggregator = WeeklyAggregator(store, clock=lambda: NOW)
    seen, errors = [], []

    sub = aggregator.feed("u1").subscribe(seen.append, errors.append)
    await settle()
    assert store.watch_calls == [("u1", datetime(2026, 3, 6, tzinfo=timezone.utc), None)]
    assert seen[-1].day_totals_km[6] == pytest.approx(3.0)

    await store.add_activity(entry(datetime(2026, 3, 9, 7, 0, tzinfo=timezone.utc), 2500))
    await settle()
    assert seen[-1].day_totals_km == (0.0, 0.0, 0.0, 2.5, 0.0, 0.0, 3.0)

    sub.unsubscribe()
    assert store.live.active_count == 0
    assert errors == []


@pytest.mark.asyncio
async def test_weekly_feed_with_no_entries_emits_zeros():
    aggregator = WeeklyAggregator(MemoryActivityStore(), clock=lambda: NOW)
    seen = []
    sub = aggregator.feed("u1").subscribe(seen.append, lambda exc: None)
    await settle()
    sub.unsubscribe()
    assert len(seen) == 1
    assert seen[0].day_totals_km == (0.0,) * 7
    assert seen[0].total_km == 0.0


@pytest.mark.asyncio
async def test_weekly_feed_failure_is_wrapped():
    store = MemoryActivityStore()
    store.watch_error = RuntimeError("permission denied")
    aggregator = WeeklyAggregator(store, clock=lambda: NOW)
    seen, errors = [], []
    aggregator.feed("u1").subscribe(seen.append, errors.append)
    await settle()

    assert seen == []
    assert len(errors) == 1
    assert isinstance(errors[0], UpstreamQueryFailure)
    assert errors[0].code == WEEKLY_FAILED
    assert "permission denied" in str(errors[0])
    assert store.live.active_count == 0


def test_same_day_entries_share_a_bucket():
    boundaries = day_boundaries(NOW)
    day = datetime(2026, 3, 10, tzinfo=timezone.utc)
    entries = [entry(day + timedelta(hours=h), meters) for h, meters in ((0, 2000), (9, 3000), (23, 4000))]
    histogram = build_histogram(entries, boundaries)
    assert {bucket_index(e.timestamp, boundaries) for e in entries} == {4}
    assert histogram.day_totals_km[4] == pytest.approx(9.0)


def test_histogram_leaves_out_entries_after_until():
    boundaries = day_boundaries(NOW)
    entries = [entry(NOW - timedelta(hours=1), 3000), entry(NOW + timedelta(hours=2), 8000)]
    assert build_histogram(entries, boundaries).day_totals_km[6] == pytest.approx(11.0)
    assert build_histogram(entries, boundaries, until=NOW).day_totals_km[6] == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_weekly_feed_ignores_future_dated_entries():
    store = MemoryActivityStore(
        [
            entry(NOW - timedelta(hours=1), 3000),
            entry(NOW + timedelta(days=1), 8000),
        ]
    )
    aggregator = WeeklyAggregator(store, clock=lambda: NOW)
    seen = []
    sub = aggregator.feed("u1").subscribe(seen.append, lambda exc: None)
    await settle()
    sub.unsubscribe()

    assert seen[-1].day_totals_km == (0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 3.0)
    assert seen[-1].total_km == pytest.approx(3.0)

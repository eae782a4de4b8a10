from datetime import datetime, timezone

from apps.api.schemas import ChallengesResponse, ProfileResponse, WeeklyActivityResponse
from apps.api.utils import iso, parse_timestamp, payload_for
from packages.models import ChallengeMembership, ChallengeProgress, ProfileSnapshot, WeeklyHistogram

LABELS = ("Mo", "Tu", "We", "Th", "Fr", "Sa", "Su")


def sample_progress():
    membership = ChallengeMembership(
        id="m1",
        challenge_id="c1",
        title="Spring",
        start_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
        end_date=datetime(2026, 3, 31, tzinfo=timezone.utc),
        joined_at=datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc),
        target_distance=20000.0,
    )
    return ChallengeProgress(membership=membership, calculated_progress=12345.0)


def test_weekly_payload_matches_contract():
    histogram = WeeklyHistogram(day_labels=LABELS, day_totals_km=(0.0, 1.23456, 0.0, 0.0, 0.0, 0.0, 2.0))
    payload = payload_for(histogram)
    parsed = WeeklyActivityResponse.model_validate(payload)
    assert parsed.labels == list(LABELS)
    assert parsed.data[1] == 1.235
    assert parsed.total_km == 3.235


def test_challenges_payload_matches_contract():
    payload = payload_for((sample_progress(),))
    parsed = ChallengesResponse.model_validate(payload)
    entry = parsed.challenges[0]
    assert entry.joined_at == "2026-03-02T08:30:00Z"
    assert entry.status == "in_progress"
    assert entry.progress_label == "12.3 / 20.0 km"


def test_profile_payload_matches_contract():
    histogram = WeeklyHistogram(day_labels=LABELS, day_totals_km=(0.0,) * 7)
    snapshot = ProfileSnapshot(weekly_activity=histogram, challenges=(sample_progress(),))
    parsed = ProfileResponse.model_validate(payload_for(snapshot))
    assert parsed.weekly_activity.total_km == 0.0
    assert parsed.challenges[0].calculated_progress == 12345.0


def test_timestamps_parse_to_utc():
    assert parse_timestamp("2026-03-01T10:00:00+02:00") == datetime(2026, 3, 1, 8, tzinfo=timezone.utc)
    assert parse_timestamp("2026-03-01T10:00:00") == datetime(2026, 3, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
    assert iso(datetime(2026, 3, 1, 10, tzinfo=timezone.utc)) == "2026-03-01T10:00:00Z"

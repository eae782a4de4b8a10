import datetime
from typing import Any, Dict, Optional

from packages.models import ChallengeProgress, ProfileSnapshot, WeeklyHistogram, to_utc


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_utc(parsed)


def iso(value: datetime.datetime) -> str:
    return to_utc(value).isoformat().replace("+00:00", "Z")


def weekly_payload(histogram: WeeklyHistogram) -> Dict[str, Any]:
    return {
        "labels": list(histogram.day_labels),
        "data": [round(value, 3) for value in histogram.day_totals_km],
        "total_km": round(histogram.total_km, 3),
    }


def challenge_payload(item: ChallengeProgress) -> Dict[str, Any]:
    membership = item.membership
    return {
        "id": membership.id,
        "challenge_id": membership.challenge_id,
        "title": membership.title,
        "description": membership.description,
        "start_date": iso(membership.start_date),
        "end_date": iso(membership.end_date),
        "joined_at": iso(membership.joined_at),
        "target_distance": membership.target_distance,
        "is_completed": membership.is_completed,
        "stored_progress": membership.stored_progress,
        "calculated_progress": item.calculated_progress,
        "status": item.status,
        "progress_label": item.progress_label,
    }


def profile_payload(snapshot: ProfileSnapshot) -> Dict[str, Any]:
    return {
        "weekly_activity": weekly_payload(snapshot.weekly_activity),
        "challenges": [challenge_payload(item) for item in snapshot.challenges],
    }


def payload_for(value: Any) -> Dict[str, Any]:
    if isinstance(value, ProfileSnapshot):
        return profile_payload(value)
    if isinstance(value, WeeklyHistogram):
        return weekly_payload(value)
    return {"challenges": [challenge_payload(item) for item in value]}

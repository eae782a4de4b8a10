from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

DAYS_IN_WEEK = 7


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ActivityEntry:
    user_id: str
    timestamp: datetime
    distance_meters: float
    duration_seconds: Optional[float] = None
    id: Optional[int] = None

    @property
    def distance_km(self) -> float:
        return self.distance_meters / 1000


@dataclass(frozen=True)
class ChallengeMembership:
    id: str
    challenge_id: str
    title: str
    start_date: datetime
    end_date: datetime
    joined_at: datetime
    description: str = ""
    target_distance: Optional[float] = None
    is_completed: bool = False
    stored_progress: float = 0.0

    def __post_init__(self):
        if self.start_date >= self.end_date:
            raise ValueError(
                f"challenge {self.challenge_id}: start_date must be before end_date"
            )


@dataclass(frozen=True)
class ChallengeProgress:
    membership: ChallengeMembership
    calculated_progress: float

    @property
    def id(self) -> str:
        return self.membership.id

    @property
    def reached_target(self) -> bool:
        target = self.membership.target_distance
        return bool(target) and self.calculated_progress >= target

    @property
    def status(self) -> str:
        if self.membership.is_completed or self.reached_target:
            return "completed"
        return "in_progress"

    @property
    def progress_label(self) -> str:
        if self.status == "completed":
            return "Completed"
        target = self.membership.target_distance
        if target:
            return f"{self.calculated_progress / 1000:.1f} / {target / 1000:.1f} km"
        return "In Progress"


@dataclass(frozen=True)
class WeeklyHistogram:
    day_labels: Tuple[str, ...]
    day_totals_km: Tuple[float, ...]

    def __post_init__(self):
        if len(self.day_labels) != DAYS_IN_WEEK or len(self.day_totals_km) != DAYS_IN_WEEK:
            raise ValueError("weekly histogram needs exactly 7 labels and 7 totals")

    @property
    def total_km(self) -> float:
        return sum(self.day_totals_km)


@dataclass(frozen=True)
class ProfileSnapshot:
    weekly_activity: WeeklyHistogram
    challenges: Tuple[ChallengeProgress, ...]

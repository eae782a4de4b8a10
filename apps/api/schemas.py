from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    code: str
    message: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str
    db: Optional[str] = None
    cache_entries: int = 0


class WeeklyActivityResponse(BaseModel):
    labels: List[str] = Field(default_factory=list)
    data: List[float] = Field(default_factory=list)
    total_km: float = 0.0


class ChallengeProgressEntry(BaseModel):
    id: str
    challenge_id: str
    title: str
    description: str = ""
    start_date: str
    end_date: str
    joined_at: str
    target_distance: Optional[float] = None
    is_completed: bool = False
    stored_progress: float = 0.0
    calculated_progress: float = 0.0
    status: str
    progress_label: str


class ChallengesResponse(BaseModel):
    challenges: List[ChallengeProgressEntry] = Field(default_factory=list)


class ProfileResponse(BaseModel):
    weekly_activity: WeeklyActivityResponse
    challenges: List[ChallengeProgressEntry] = Field(default_factory=list)


class InvalidateRequest(BaseModel):
    scope: Literal["all", "user", "weekly", "challenges"] = "all"
    user_id: Optional[str] = None


class InvalidateResponse(BaseModel):
    invalidated: int


class StatusResponse(BaseModel):
    status: str


class ActivityCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    distance_meters: float
    duration_seconds: Optional[float] = None
    timestamp: Optional[str] = None


class ActivityCreateResponse(BaseModel):
    id: Optional[int] = None
    user_id: str
    timestamp: str
    distance_meters: float
    duration_seconds: Optional[float] = None


class JoinChallengeRequest(BaseModel):
    membership_id: Optional[str] = None
    challenge_id: str
    title: str
    description: str = ""
    start_date: str
    end_date: str
    target_distance: Optional[float] = None


class CompleteChallengeRequest(BaseModel):
    progress: float = 0.0

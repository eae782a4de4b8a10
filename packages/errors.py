from __future__ import annotations

from typing import Optional


class ProfileError(Exception):
    """Base class for failures surfaced on a profile error channel."""

    code = "PROFILE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class UpstreamQueryFailure(ProfileError):
    """A range query or live feed against an external store failed."""

    code = "UPSTREAM_QUERY_FAILED"

    def __init__(
        self,
        source: str,
        user_id: str,
        cause: Optional[BaseException] = None,
        code: Optional[str] = None,
    ):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{source} query failed for user {user_id}{detail}", code)
        self.source = source
        self.user_id = user_id
        self.cause = cause


class PartialAggregationFailure(ProfileError):
    """One challenge's progress query failed; the whole emission is dropped."""

    code = "CHALLENGE_PROGRESS_FAILED"

    def __init__(self, user_id: str, challenge_id: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"progress for challenge {challenge_id} of user {user_id} failed{detail}")
        self.user_id = user_id
        self.challenge_id = challenge_id
        self.cause = cause


class InvalidActivity(ProfileError, ValueError):
    code = "INVALID_ACTIVITY"


WEEKLY_FAILED = "FETCH_WEEKLY_ACTIVITY_FAILED"
CHALLENGES_FAILED = "FETCH_CHALLENGES_FAILED"
PROFILE_FAILED = "FETCH_PROFILE_FAILED"

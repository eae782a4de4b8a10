import pytest
from pydantic import ValidationError

from apps.api.schemas import ActivityCreateRequest, InvalidateRequest, WeeklyActivityResponse


def test_invalidate_request_defaults_to_all():
    req = InvalidateRequest()
    assert req.scope == "all"
    assert req.user_id is None


def test_invalidate_request_rejects_unknown_scope():
    with pytest.raises(ValidationError):
        InvalidateRequest(scope="monthly")


def test_activity_request_requires_user():
    with pytest.raises(ValidationError):
        ActivityCreateRequest(user_id="", distance_meters=100)


def test_weekly_response_defaults_empty():
    payload = WeeklyActivityResponse()
    assert payload.labels == []
    assert payload.total_km == 0.0

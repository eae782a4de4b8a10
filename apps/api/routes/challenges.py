import datetime
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from packages.models import ChallengeMembership
from ..deps import get_profile_service
from ..schemas import CompleteChallengeRequest, JoinChallengeRequest, StatusResponse
from ..utils import parse_timestamp


router = APIRouter()

logger = logging.getLogger("fitness.api")


def _required_time(value: str, field: str) -> datetime.datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {field}")
    return parsed


@router.post("/challenges/{user_id}/join", response_model=StatusResponse, status_code=status.HTTP_201_CREATED)
async def join_challenge(user_id: str, body: JoinChallengeRequest, service=Depends(get_profile_service)):
    try:
        membership = ChallengeMembership(
            id=body.membership_id or uuid.uuid4().hex,
            challenge_id=body.challenge_id,
            title=body.title,
            description=body.description,
            start_date=_required_time(body.start_date, "start_date"),
            end_date=_required_time(body.end_date, "end_date"),
            joined_at=datetime.datetime.now(datetime.timezone.utc),
            target_distance=body.target_distance,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    await service.join_challenge(user_id, membership)
    logger.info("challenge joined user=%s challenge=%s membership=%s", user_id, membership.challenge_id, membership.id)
    return {"status": "ok"}


@router.post("/challenges/{user_id}/{membership_id}/complete", response_model=StatusResponse)
async def complete_challenge(
    user_id: str,
    membership_id: str,
    body: CompleteChallengeRequest,
    service=Depends(get_profile_service),
):
    if not await service.complete_challenge(user_id, membership_id, body.progress):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Membership not found")
    return {"status": "ok"}

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ..deps import get_profile_service
from ..schemas import ActivityCreateRequest, ActivityCreateResponse
from ..utils import iso, parse_timestamp


router = APIRouter()

logger = logging.getLogger("fitness.api")


@router.post("/activities", response_model=ActivityCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_activity(body: ActivityCreateRequest, service=Depends(get_profile_service)):
    timestamp = parse_timestamp(body.timestamp)
    if body.timestamp and timestamp is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid timestamp")
    entry = await service.record_activity(
        body.user_id,
        body.distance_meters,
        duration_seconds=body.duration_seconds,
        timestamp=timestamp,
    )
    logger.info("activity recorded user=%s id=%s distance_m=%.1f", entry.user_id, entry.id, entry.distance_meters)
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "timestamp": iso(entry.timestamp),
        "distance_meters": entry.distance_meters,
        "duration_seconds": entry.duration_seconds,
    }

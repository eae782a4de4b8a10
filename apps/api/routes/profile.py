import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, status

from packages import config
from packages.errors import ProfileError
from services.profile.service import DataKind, InvalidationScope, ProfileService
from ..deps import get_profile_service, parse_kind
from ..schemas import (
    ChallengesResponse,
    InvalidateRequest,
    InvalidateResponse,
    ProfileResponse,
    StatusResponse,
    WeeklyActivityResponse,
)
from ..utils import payload_for


router = APIRouter()

logger = logging.getLogger("fitness.api")


async def _fetch(service: ProfileService, kind: DataKind, user_id: str):
    try:
        value = await asyncio.wait_for(
            service.fetch_once(kind, user_id), timeout=config.PROFILE_FETCH_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Profile data not available in time")
    except ValueError as exc:
        if isinstance(exc, ProfileError):
            raise
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return payload_for(value)


@router.get("/profile/{user_id}", response_model=ProfileResponse)
async def profile(user_id: str, service=Depends(get_profile_service)):
    return await _fetch(service, DataKind.PROFILE, user_id)


@router.get("/profile/{user_id}/weekly", response_model=WeeklyActivityResponse)
async def weekly_activity(user_id: str, service=Depends(get_profile_service)):
    return await _fetch(service, DataKind.WEEKLY, user_id)


@router.get("/profile/{user_id}/challenges", response_model=ChallengesResponse)
async def joined_challenges(user_id: str, service=Depends(get_profile_service)):
    return await _fetch(service, DataKind.CHALLENGES, user_id)


@router.post("/profile/{user_id}/prefetch", response_model=StatusResponse)
async def prefetch(user_id: str, kind: str = Query("profile"), service=Depends(get_profile_service)):
    await service.prefetch(parse_kind(kind), user_id)
    return {"status": "ok"}


@router.post("/profile/invalidate", response_model=InvalidateResponse)
async def invalidate(body: InvalidateRequest, service=Depends(get_profile_service)):
    if body.scope == "all":
        scope = InvalidationScope.all()
    elif not body.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required for this scope")
    else:
        scope = getattr(InvalidationScope, body.scope)(body.user_id)
    return {"invalidated": service.invalidate(scope)}


@router.websocket("/profile/{user_id}/live")
async def profile_live(websocket: WebSocket, user_id: str, kind: str = "profile"):
    service = get_profile_service(websocket)
    try:
        data_kind = DataKind(kind)
    except ValueError:
        await websocket.close(code=1008)
        return
    await websocket.accept()

    queue: asyncio.Queue = asyncio.Queue()
    subscription = service.subscribe(
        data_kind,
        user_id,
        lambda value: queue.put_nowait(("data", value)),
        lambda exc: queue.put_nowait(("error", exc)),
    )
    logger.info("live %s stream opened user=%s", data_kind.value, user_id)
    receiver = asyncio.ensure_future(websocket.receive())
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                if receiver.result().get("type") == "websocket.disconnect":
                    break
                receiver = asyncio.ensure_future(websocket.receive())
                continue
            tag, value = getter.result()
            if tag == "error":
                code = getattr(value, "code", "internal_error")
                await websocket.send_json({"error": {"code": code, "message": str(value)}})
            else:
                await websocket.send_json({"kind": data_kind.value, "data": payload_for(value)})
    finally:
        receiver.cancel()
        subscription.unsubscribe()
        logger.info("live %s stream closed user=%s", data_kind.value, user_id)

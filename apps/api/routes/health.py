from fastapi import APIRouter, Depends

from packages import db
from ..deps import get_profile_service
from ..schemas import HealthResponse


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(service=Depends(get_profile_service)):
    return {
        "status": "ok",
        "db": "present" if db.db_exists(service.activity_store.db_path) else "missing",
        "cache_entries": len(service.cache),
    }

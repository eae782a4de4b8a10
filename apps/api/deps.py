from fastapi import HTTPException, status
from fastapi.requests import HTTPConnection

from services.profile.service import DataKind, ProfileService


def get_profile_service(conn: HTTPConnection) -> ProfileService:
    service = getattr(conn.app.state, "profile_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Profile service not ready")
    return service


def parse_kind(kind: str) -> DataKind:
    try:
        return DataKind(kind)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown data kind '{kind}'",
        )

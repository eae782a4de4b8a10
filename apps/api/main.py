from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import time
import uuid
import logging

from packages import config
from packages.error_reporting import init_error_reporting
from packages.errors import InvalidActivity, PartialAggregationFailure, ProfileError, UpstreamQueryFailure
from packages.logging_utils import setup_logging
from packages.request_context import request_id_var
from packages.metrics import inc, observe
from services.profile.service import build_profile_service
from .routes import activities as activities_routes
from .routes import challenges as challenges_routes
from .routes import health as health_routes
from .routes import metrics as metrics_routes
from .routes import profile as profile_routes


setup_logging()
init_error_reporting("api", enable_fastapi=True)
logger = logging.getLogger("fitness.api")

app = FastAPI(title="Fitness Profile API")


def format_error(code: str, message: str, request_id: str | None = None, details: dict | None = None):
    payload = {"error": {"code": code, "message": message, "request_id": request_id}}
    if details:
        payload["error"]["details"] = details
    return payload


def error_status(exc: ProfileError) -> int:
    if isinstance(exc, InvalidActivity):
        return 400
    if isinstance(exc, (UpstreamQueryFailure, PartialAggregationFailure)):
        return 502
    return 500


@app.on_event("startup")
def start_profile_service():
    app.state.profile_service = build_profile_service(config.DB_PATH)
    logger.info("profile service ready db=%s", config.DB_PATH)


@app.on_event("shutdown")
def stop_profile_service():
    service = getattr(app.state, "profile_service", None)
    if service is not None:
        service.close()
        app.state.profile_service = None


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    token = request_id_var.set(request_id)
    start = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        return response
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.exception("request_error %s %s %.1fms", request.method, request.url.path, duration_ms)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        status_code = getattr(response, "status_code", "ERR")
        inc("http_requests_total")
        inc(f"http_requests_total{{path=\"{request.url.path}\",status=\"{status_code}\"}}")
        observe("http_request_duration_seconds", duration_ms / 1000.0)
        logger.info("%s %s -> %s %.1fms", request.method, request.url.path, status_code, duration_ms)
        request_id_var.reset(token)
        if response is not None:
            response.headers["x-request-id"] = request_id

# Consistent error model
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    req_id = request_id_var.get() or "-"
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    code = f"http_{exc.status_code}"
    details = exc.detail if isinstance(exc.detail, dict) else None
    return JSONResponse(status_code=exc.status_code, content=format_error(code, message, req_id, details))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    req_id = request_id_var.get() or "-"
    details = {"errors": [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]}
    return JSONResponse(status_code=422, content=format_error("http_422", "Invalid request", req_id, details))


@app.exception_handler(ProfileError)
async def profile_exception_handler(request: Request, exc: ProfileError):
    req_id = request_id_var.get() or "-"
    status_code = error_status(exc)
    logger.warning("profile_error %s %s code=%s: %s", request.method, request.url.path, exc.code, exc)
    return JSONResponse(status_code=status_code, content=format_error(exc.code, str(exc), req_id))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    req_id = request_id_var.get() or "-"
    logger.exception("unhandled_exception %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=format_error("internal_error", "Internal server error", req_id))

# Public routes (unprefixed) + /api + /api/v1
for prefix in ("", "/api", "/api/v1"):
    app.include_router(health_routes.router, prefix=prefix)
    app.include_router(metrics_routes.router, prefix=prefix)
    app.include_router(profile_routes.router, prefix=prefix)
    app.include_router(activities_routes.router, prefix=prefix)
    app.include_router(challenges_routes.router, prefix=prefix)

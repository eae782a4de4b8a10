from pathlib import Path
import os

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]

load_dotenv(ROOT / ".env")

DB_PATH = Path(os.getenv("FITNESS_DB_PATH", ROOT / "data" / "fitness.db"))
API_HOST = os.getenv("FITNESS_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("FITNESS_API_PORT", "8000"))
RUN_MODE = os.getenv("RUN_MODE", "dev").lower()
TIMEZONE = os.getenv("FITNESS_TIMEZONE", "UTC")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "FITNESS_CORS_ORIGINS",
        "http://127.0.0.1:8788,http://localhost:8788",
    ).split(",")
    if origin.strip()
]

# Profile cache freshness (seconds)
PROFILE_STALE_SECONDS = float(os.getenv("FITNESS_PROFILE_STALE_SECONDS", "300"))
WEEKLY_STALE_SECONDS = float(os.getenv("FITNESS_WEEKLY_STALE_SECONDS", "300"))
CHALLENGES_STALE_SECONDS = float(os.getenv("FITNESS_CHALLENGES_STALE_SECONDS", "180"))
CACHE_GC_SECONDS = float(os.getenv("FITNESS_CACHE_GC_SECONDS", "600"))
CACHE_KEEP_ALIVE_SECONDS = float(os.getenv("FITNESS_CACHE_KEEP_ALIVE_SECONDS", "5"))

# Upstream retry settings
UPSTREAM_MAX_RETRIES = int(os.getenv("FITNESS_UPSTREAM_MAX_RETRIES", "2"))
UPSTREAM_BACKOFF_BASE_SEC = float(os.getenv("FITNESS_UPSTREAM_BACKOFF_BASE_SEC", "0.5"))
UPSTREAM_BACKOFF_MAX_SEC = float(os.getenv("FITNESS_UPSTREAM_BACKOFF_MAX_SEC", "8"))

PROFILE_FETCH_TIMEOUT_SECONDS = float(os.getenv("FITNESS_PROFILE_FETCH_TIMEOUT_SECONDS", "10"))

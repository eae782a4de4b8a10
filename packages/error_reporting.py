import logging
import os

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from .errors import ProfileError


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def init_error_reporting(service_name: str, enable_fastapi: bool = False) -> bool:
    dsn = os.getenv("FITNESS_SENTRY_DSN")
    if not dsn:
        return False

    integrations = [LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)]
    if enable_fastapi:
        integrations.extend([FastApiIntegration(), StarletteIntegration()])

    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("FITNESS_ENV", os.getenv("RUN_MODE", "prod")),
        release=os.getenv("FITNESS_RELEASE"),
        traces_sample_rate=_float_env("FITNESS_SENTRY_TRACES_SAMPLE_RATE", 0.0),
        profiles_sample_rate=_float_env("FITNESS_SENTRY_PROFILES_SAMPLE_RATE", 0.0),
        integrations=integrations,
        send_default_pii=False,
    )
    sentry_sdk.set_tag("service", service_name)
    return True


def report_upstream_failure(exc: BaseException, key: str) -> None:
    """Forward a surfaced upstream failure to Sentry, tagged with its cache key.

    A no-op when error reporting was never initialised.
    """
    if not sentry_sdk.is_initialized():
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("feed_key", key)
        if isinstance(exc, ProfileError):
            scope.set_tag("error_code", exc.code)
        sentry_sdk.capture_exception(exc)

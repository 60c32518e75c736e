"""Sentry bootstrap for the API and worker processes."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from src.core.config import get_settings
from src.core.logger import get_logger


_SENTRY_INITIALIZED = False


def _call_sentry_init(**kwargs: Any) -> None:
    sentry_sdk.init(**kwargs)


def init_sentry(*, with_fastapi: bool = False) -> bool:
    """Initialize Sentry once when DSN is configured."""

    global _SENTRY_INITIALIZED
    if _SENTRY_INITIALIZED:
        return True

    settings = get_settings()
    dsn = settings.sentry_dsn.strip()
    if not dsn:
        return False

    _call_sentry_init(
        dsn=dsn,
        environment=settings.env,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        integrations=[FastApiIntegration()] if with_fastapi else [],
    )
    _SENTRY_INITIALIZED = True
    get_logger("loomreach.observability").info(
        "sentry_initialized",
        env=settings.env,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    return True


@contextmanager
def job_scope(*, job_id: str, user_id: Optional[str] = None) -> Iterator[None]:
    """Tag every event reported while a job runs with its job and user."""

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("job_id", job_id)
        if user_id:
            scope.set_tag("user_id", user_id)
        yield


def capture_exception(exc: BaseException) -> None:
    sentry_sdk.capture_exception(exc)


def reset_observability_for_tests() -> None:
    global _SENTRY_INITIALIZED
    _SENTRY_INITIALIZED = False

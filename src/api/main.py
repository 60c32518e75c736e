"""FastAPI application entrypoint for the loomreach video pipeline."""

from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from src.core.config import get_settings
from src.core.logger import bind_request_context, clear_request_context, get_logger
from src.core.metrics import record_http_request, render_prometheus_metrics
from src.core.observability import init_sentry
from src.orchestrator.runtime import get_pipeline_runtime
from src.pipeline.router import router as pipeline_router
from src.storage.db import load_models
from src.storage.db import test_connection as test_db_connection
from src.storage.redis_client import test_connection as test_redis_connection


settings = get_settings()
logger = get_logger("loomreach.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    load_models()
    sentry_enabled = init_sentry(with_fastapi=True)
    if settings.api_embedded_workers:
        get_pipeline_runtime().controller.start()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        metrics_enabled=settings.metrics_enabled,
        sentry_enabled=sentry_enabled,
        embedded_workers=settings.api_embedded_workers,
    )
    yield
    if settings.api_embedded_workers:
        get_pipeline_runtime().controller.shutdown()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    bind_request_context(request_id=request_id, user_id=request.headers.get("x-user-id"))

    status_code = 500
    try:
        response = await call_next(request)
        status_code = int(response.status_code)
    finally:
        duration = perf_counter() - started_at
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_seconds=duration,
            )
        clear_request_context()

    response.headers["x-request-id"] = request_id
    return response


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    redis_ok, redis_error = test_redis_connection()

    healthy = db_ok and redis_ok
    status = "ok" if healthy else "degraded"

    payload = {
        "status": status,
        "env": settings.env,
        "services": {
            "database": {"ok": db_ok, "error": db_error},
            "redis": {"ok": redis_ok, "error": redis_error},
        },
    }

    return JSONResponse(content=payload, status_code=200 if healthy else 503)


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
    }


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)

    payload = render_prometheus_metrics(
        app_name=settings.app_name,
        app_version=settings.app_version,
        env=settings.env,
    )
    return PlainTextResponse(
        payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(pipeline_router)

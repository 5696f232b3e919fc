"""FastAPI application entrypoint for crosspost."""

from __future__ import annotations

from time import perf_counter
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from crosspost.auth.dependencies import extract_bearer_token
from crosspost.auth.tokens import decode_access_token
from crosspost.billing.router import router as credits_router
from crosspost.billing.webhooks import router as billing_router
from crosspost.brands.router import router as brands_router
from crosspost.connections.router import router as connections_router
from crosspost.content.rules import seed_platforms
from crosspost.core.config import get_settings
from crosspost.core.logger import bind_request_context, clear_request_context, get_logger
from crosspost.core.metrics import record_http_request, render_prometheus_metrics
from crosspost.core.observability import init_sentry, sentry_scope
from crosspost.orchestrator.router import router as cron_router
from crosspost.posts.router import router as posts_router
from crosspost.publishing.router import router as publishing_router
from crosspost.storage.db import load_models, session_scope
from crosspost.storage.db import test_connection as test_db_connection
from crosspost.storage.redis_client import check_connection as test_redis_connection
from crosspost.tenants.router import router as tenants_router


settings = get_settings()
logger = get_logger("crosspost.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)


def _request_tenant_id(request: Request) -> Optional[str]:
    token = extract_bearer_token(request)
    if token is None:
        return None
    try:
        return decode_access_token(token).tenant_id
    except HTTPException:
        return None


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    tenant_id = _request_tenant_id(request)
    bind_request_context(request_id=request_id, tenant_id=tenant_id)

    status_code = 500
    try:
        with sentry_scope(tenant_id=tenant_id, request_id=request_id):
            response = await call_next(request)
        status_code = int(response.status_code)
    finally:
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_seconds=perf_counter() - started_at,
            )
        clear_request_context()

    response.headers["x-request-id"] = request_id
    return response


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    sentry_enabled = init_sentry()
    seeded = 0
    if settings.seed_platforms_on_startup:
        with session_scope() as session:
            seeded = seed_platforms(session)
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        sentry_enabled=sentry_enabled,
        metrics_enabled=settings.metrics_enabled,
        platforms_seeded=seeded,
    )


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    redis_ok, redis_error = test_redis_connection()
    healthy = db_ok and redis_ok

    payload = {
        "status": "ok" if healthy else "degraded",
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
    return PlainTextResponse(payload, media_type="text/plain; version=0.0.4; charset=utf-8")


app.include_router(tenants_router)
app.include_router(brands_router)
app.include_router(connections_router)
app.include_router(posts_router)
app.include_router(publishing_router)
app.include_router(credits_router)
app.include_router(billing_router)
app.include_router(cron_router)

"""FastAPI application entrypoint for Woozy Social."""

from __future__ import annotations

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from woozy.approvals.router import router as posts_router
from woozy.auth.dependencies import AUTH_CONTEXT_KEY, resolve_request_auth_context
from woozy.billing.router import router as billing_router
from woozy.billing.webhooks import router as billing_webhook_router
from woozy.core.config import get_settings
from woozy.core.errors import RateLimited, WoozyError, error_payload
from woozy.core.logger import bind_request_context, clear_request_context, configure_logging, get_logger
from woozy.core.metrics import record_http_request, render_prometheus_metrics
from woozy.core.observability import init_sentry, sentry_scope
from woozy.storage.db import load_models
from woozy.storage.db import test_connection as test_db_connection
from woozy.storage.redis_client import test_connection as test_redis_connection
from woozy.workspaces.router import router as workspaces_router


settings = get_settings()
configure_logging()
logger = get_logger("woozy.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id
    auth_context = resolve_request_auth_context(request)
    setattr(request.state, AUTH_CONTEXT_KEY, auth_context)

    workspace_id = request.headers.get("x-workspace-id") or request.query_params.get("workspace_id")
    bind_request_context(
        request_id=request_id,
        workspace_id=workspace_id,
        user_id=auth_context.user_id if auth_context is not None else None,
    )

    status_code = 500
    try:
        with sentry_scope(workspace_id=workspace_id, request_id=request_id):
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


@app.exception_handler(WoozyError)
async def woozy_error_handler(request: Request, exc: WoozyError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    if exc.status_code >= 500:
        logger.warning("request_failed", error_code=exc.error_code, error=exc.message, path=request.url.path)
    response = JSONResponse(status_code=exc.status_code, content=error_payload(exc, request_id=request_id))
    if isinstance(exc, RateLimited):
        response.headers["x-rate-limit-limit"] = str(exc.limit)
        response.headers["x-rate-limit-remaining"] = str(exc.remaining)
        response.headers["x-rate-limit-reset"] = str(exc.reset_seconds)
        response.headers["retry-after"] = str(exc.reset_seconds)
    return response


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    sentry_enabled = init_sentry()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        sentry_enabled=sentry_enabled,
        metrics_enabled=settings.metrics_enabled,
        rate_limit_enabled=settings.rate_limit_enabled,
        ayrshare_configured=bool(settings.ayrshare_api_key),
        stripe_configured=bool(settings.stripe_api_key),
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


app.include_router(workspaces_router)
app.include_router(posts_router)
app.include_router(billing_router)
app.include_router(billing_webhook_router)

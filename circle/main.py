"""FastAPI application factory for The Circle.

Run with: uvicorn circle.main:app --reload
"""

from __future__ import annotations

import asyncio
import contextlib
import traceback
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app as make_metrics_app
from sqlalchemy import text
from starlette.middleware.gzip import GZipMiddleware

from circle.api.auth import router as auth_router
from circle.api.circles import router as circles_router
from circle.api.dm import router as dm_router
from circle.api.notifications import push_router
from circle.api.notifications import router as notifications_router
from circle.api.preferences import router as preferences_router
from circle.api.users import router as users_router
from circle.common.config import get_settings
from circle.common.exceptions import CircleBaseException
from circle.common.logging import get_logger, request_id_var
from circle.common.metrics import set_app_info
from circle.common.middleware import (
    PrometheusMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from circle.relay.manager import manager as relay_manager
from circle.relay.router import router as relay_router
from circle.relay.subscriber import redis_subscriber

logger = get_logger("SYSTEM")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """Start the Redis relay subscriber when cross-process fan-out is enabled."""
    subscriber_task = None
    if get_settings().relay_use_redis:
        subscriber_task = asyncio.create_task(redis_subscriber(relay_manager))
        logger.info("Relay Redis subscriber started")

    yield

    if subscriber_task is not None:
        subscriber_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await subscriber_task
        logger.info("Relay Redis subscriber stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="The Circle",
        version=VERSION,
        description="Circles, real-time chat, direct messages, and notifications",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Last added = outermost = runs first on request
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ─── Exception Handlers ───

    @app.exception_handler(CircleBaseException)
    async def circle_exception_handler(request: Request, exc: CircleBaseException) -> JSONResponse:
        """Map Circle exceptions to their status code with a structured body."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"{type(exc).__name__}: {exc}",
            extra={"data": {"path": request.url.path, "status": exc.status_code}},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: log traceback, return 500."""
        rid = request_id_var.get("")
        logger.error(
            f"Unhandled {type(exc).__name__}: {exc}",
            extra={
                "data": {
                    "path": request.url.path,
                    "request_id": rid,
                    "traceback": traceback.format_exc(),
                }
            },
        )
        body: dict = {
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
        }
        if rid:
            body["request_id"] = rid
        return JSONResponse(status_code=500, content=body)

    # ─── Health / Readiness ───

    @app.get("/health")
    async def health_check() -> dict:
        """Liveness probe."""
        return {"status": "ok", "version": VERSION}

    @app.get("/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness probe: database always, Redis only when the relay uses it."""
        checks: dict[str, str] = {}
        all_ok = True

        try:
            from circle.common.database import _get_engine

            engine = _get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as exc:
            checks["database"] = f"error: {type(exc).__name__}"
            all_ok = False

        current = get_settings()
        if current.relay_use_redis:
            try:
                import redis.asyncio as aioredis

                r = aioredis.from_url(current.redis_url)
                await r.ping()
                await r.aclose()
                checks["redis"] = "ok"
            except Exception as exc:
                checks["redis"] = f"error: {type(exc).__name__}"
                all_ok = False

        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={
                "status": "ok" if all_ok else "degraded",
                "version": VERSION,
                "checks": checks,
                "relay_connections": relay_manager.active_count,
            },
        )

    # ─── Prometheus Metrics ───

    app.mount("/metrics", make_metrics_app())
    set_app_info(version=VERSION, environment=settings.environment)

    # ─── Router Mounting ───

    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(circles_router, prefix="/api/circles", tags=["circles"])
    app.include_router(dm_router, prefix="/api/dm", tags=["dm"])
    app.include_router(users_router, prefix="/api/users", tags=["users"])
    app.include_router(notifications_router, prefix="/api/notifications", tags=["notifications"])
    app.include_router(push_router, prefix="/api/push", tags=["push"])
    app.include_router(preferences_router, prefix="/api/preferences", tags=["preferences"])
    app.include_router(relay_router, tags=["relay"])

    logger.info("App started", extra={"data": {"version": VERSION}})

    return app


app = create_app()

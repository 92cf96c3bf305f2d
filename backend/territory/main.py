# backend/territory/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import SessionLocal
from .domain.errors import TerritoryError
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .routers.agents import router as agents_router
from .routers.assignments import router as assignments_router
from .routers.audit import router as audit_router
from .routers.health import router as health_router
from .routers.metrics import router as metrics_router
from .routers.teams import router as teams_router
from .routers.zones import router as zones_router
from .services.activation import ActivationSweeper
from .services.notifications import get_notifier

API_PREFIX = "/api"

log = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    log.info("territory api starting (env=%s, sweeper=%s)", settings.app_env, settings.sweeper_mode)

    sweeper = None
    if settings.sweeper_mode == "inprocess":
        sweeper = ActivationSweeper(
            SessionLocal,
            interval=settings.sweep_interval_seconds,
            startup_delay=settings.sweep_startup_delay_seconds,
            limit=settings.sweep_batch_limit,
            notifier=get_notifier(),
        )
        sweeper.start()
    app.state.sweeper = sweeper

    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()
        log.info("territory api shutting down")


async def territory_error_handler(request: Request, exc: TerritoryError) -> JSONResponse:
    log.info("request rejected: %s", exc.message, extra={"status_code": exc.status_code})
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": exc.message, "details": exc.details},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Territory Assignment Engine", version=settings.app_version, lifespan=lifespan)

    # Request-ID first so every later log line can carry it
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TerritoryError, territory_error_handler)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(metrics_router, prefix=API_PREFIX)
    app.include_router(zones_router, prefix=API_PREFIX)
    app.include_router(teams_router, prefix=API_PREFIX)
    app.include_router(agents_router, prefix=API_PREFIX)
    app.include_router(assignments_router, prefix=API_PREFIX)
    app.include_router(audit_router, prefix=API_PREFIX)
    return app


app = create_app()

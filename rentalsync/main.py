# rentalsync/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .routers.integrations import router as integrations_router
from .routers.webhooks import router as webhooks_router

API_PREFIX = "/api"

log = logging.getLogger("rentalsync")


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
    scheduler = None
    if settings.scheduler_enabled:
        from .services.scheduler import build_default_scheduler

        scheduler = build_default_scheduler(settings)
        scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop(timeout=10.0)


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="RentalSync",
        version=getattr(settings, "app_version", "dev"),
        lifespan=lifespan,
    )

    # Request-ID first
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks_router, prefix=API_PREFIX)
    app.include_router(integrations_router, prefix=API_PREFIX)

    @app.get(f"{API_PREFIX}/health")
    def health():
        return {"ok": True, "env": settings.app_env, "version": settings.app_version}

    return app


app = create_app()

"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from planner_core.api.error_handlers import register_exception_handlers
from planner_core.api.middleware import ResponseGuardMiddleware
from planner_core.api.routers import get_api_router
from planner_core.core.config import AppSettings, get_settings
from planner_core.core.database import engine
from planner_core.core.logging import configure_logging
from planner_core.models import Base

LOGGER = logging.getLogger("planner_core.main")


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: D401
    """Application lifespan context for startup/shutdown hooks."""

    settings = get_settings()
    if settings.database_url.startswith("sqlite") and settings.environment in {"local", "development", "test"}:
        Base.metadata.create_all(bind=engine)
    LOGGER.info(
        "service_started",
        extra={"environment": settings.environment, "service_name": settings.service_name},
    )
    yield
    LOGGER.info("service_stopped", extra={"service_name": settings.service_name})


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Event Planner Core",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(ResponseGuardMiddleware, timeout_seconds=settings.request_timeout_seconds)

    register_exception_handlers(app)
    app.include_router(get_api_router())
    return app


app = create_app()

"""Router registrations."""

from fastapi import APIRouter

from planner_core.api.routers import events, generation_jobs, health, internal, payments, webhooks


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router, tags=["health"])
    router.include_router(
        generation_jobs.router,
        prefix="/api/v1/tickets/generation-jobs",
        tags=["generation-jobs"],
    )
    router.include_router(events.router, prefix="/api/v1/events", tags=["events"])
    router.include_router(payments.router, prefix="/api/v1/payments", tags=["payments"])
    router.include_router(webhooks.router, prefix="/api/internal", tags=["webhooks"])
    router.include_router(internal.router, prefix="/api/internal", tags=["internal"])
    return router

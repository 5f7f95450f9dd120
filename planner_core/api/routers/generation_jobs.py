"""Ticket generation job endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from planner_core.api.dependencies import get_generation_job_service, require_permission
from planner_core.clients.auth import AuthServiceError, AuthUser, get_auth_client
from planner_core.dispatch import get_generation_dispatcher
from planner_core.schemas.envelope import Envelope
from planner_core.schemas.generation_job import (
    GenerationJobCreate,
    GenerationJobDetail,
    GenerationJobPage,
    GenerationJobResponse,
    TicketResponse,
)
from planner_core.services.generation_jobs import GenerationJobService
from planner_core.services.job_store import JobPage

LOGGER = logging.getLogger("planner_core.api.generation_jobs")

router = APIRouter()


def _page(page: JobPage) -> GenerationJobPage:
    return GenerationJobPage(
        items=[GenerationJobResponse.model_validate(job, from_attributes=True) for job in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
        pages=page.pages,
    )


@router.post(
    "",
    response_model=Envelope[GenerationJobResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_generation_job(
    payload: GenerationJobCreate,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_permission("tickets.create")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[GenerationJobResponse]:
    job = service.create_job(payload, actor_id=user.id)
    background_tasks.add_task(get_generation_dispatcher().dispatch, job.id)
    return Envelope(
        data=GenerationJobResponse.model_validate(job, from_attributes=True),
        message="Ticket generation job created",
    )


@router.get("", response_model=Envelope[GenerationJobPage])
def list_generation_jobs(
    job_status: Optional[str] = Query(default=None, alias="status"),
    event_id: Optional[int] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: AuthUser = Depends(require_permission("tickets.read")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[GenerationJobPage]:
    return Envelope(data=_page(service.list_jobs(status=job_status, event_id=event_id, page=page, limit=limit)))


@router.get("/failed", response_model=Envelope[List[GenerationJobResponse]])
def list_failed_generation_jobs(
    limit: int = Query(default=20, ge=1, le=100),
    _: AuthUser = Depends(require_permission("tickets.read")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[List[GenerationJobResponse]]:
    jobs = service.list_failed(limit)
    return Envelope(data=[GenerationJobResponse.model_validate(job, from_attributes=True) for job in jobs])


@router.get("/stats", response_model=Envelope[Dict[str, int]])
def generation_job_stats(
    event_id: Optional[int] = Query(default=None, alias="eventId"),
    _: AuthUser = Depends(require_permission("tickets.read")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[Dict[str, int]]:
    return Envelope(data=service.stats(event_id))


@router.get("/events/{event_id}/jobs", response_model=Envelope[GenerationJobPage])
def list_event_generation_jobs(
    event_id: int,
    job_status: Optional[str] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: AuthUser = Depends(require_permission("tickets.read")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[GenerationJobPage]:
    return Envelope(data=_page(service.list_event_jobs(event_id, status=job_status, page=page, limit=limit)))


@router.get("/{job_id}", response_model=Envelope[GenerationJobDetail])
async def get_generation_job(
    job_id: int,
    _: AuthUser = Depends(require_permission("tickets.read")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[GenerationJobDetail]:
    job, tickets = service.get_job(job_id)
    detail = GenerationJobDetail(
        **GenerationJobResponse.model_validate(job, from_attributes=True).model_dump(),
        tickets=[TicketResponse.model_validate(ticket, from_attributes=True) for ticket in tickets],
        created_by_user=await _lookup_user(job.created_by),
    )
    return Envelope(data=detail)


@router.post("/{job_id}/retry", response_model=Envelope[GenerationJobResponse])
def retry_generation_job(
    job_id: int,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_permission("tickets.process")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[GenerationJobResponse]:
    job = service.retry_job(job_id, actor_id=user.id)
    background_tasks.add_task(get_generation_dispatcher().dispatch, job.id)
    return Envelope(
        data=GenerationJobResponse.model_validate(job, from_attributes=True),
        message="Ticket generation job requeued",
    )


@router.post("/{job_id}/cancel", response_model=Envelope[GenerationJobResponse])
def cancel_generation_job(
    job_id: int,
    user: AuthUser = Depends(require_permission("tickets.update")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[GenerationJobResponse]:
    job = service.cancel_job(job_id, actor_id=user.id)
    return Envelope(
        data=GenerationJobResponse.model_validate(job, from_attributes=True),
        message="Ticket generation job cancelled",
    )


async def _lookup_user(user_id: Optional[int]) -> Optional[Dict[str, Any]]:
    if user_id is None:
        return None
    try:
        users = await get_auth_client().get_users_batch([user_id])
    except AuthServiceError:
        LOGGER.warning("created_by_lookup_failed", extra={"user_id": user_id})
        return None
    return users.get(user_id)

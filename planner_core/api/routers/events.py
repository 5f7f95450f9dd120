"""Per-event views: generation status and scan history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from planner_core.api.dependencies import get_generation_job_service, require_permission
from planner_core.clients.auth import AuthUser
from planner_core.clients.scan_validation import get_scan_validation_client
from planner_core.schemas.envelope import Envelope
from planner_core.schemas.generation_job import GenerationStatus
from planner_core.schemas.scan import ScanHistoryPage
from planner_core.services.generation_jobs import GenerationJobService

router = APIRouter()


@router.get("/{event_id}/tickets/generation-status", response_model=Envelope[GenerationStatus])
def get_generation_status(
    event_id: int,
    _: AuthUser = Depends(require_permission("tickets.read")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[GenerationStatus]:
    return Envelope(data=GenerationStatus.model_validate(service.generation_status(event_id), from_attributes=True))


@router.get("/{event_id}/scan/history", response_model=Envelope[ScanHistoryPage])
async def get_scan_history(
    event_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    _: AuthUser = Depends(require_permission("tickets.read")),
    service: GenerationJobService = Depends(get_generation_job_service),
) -> Envelope[ScanHistoryPage]:
    service.require_event(event_id)
    history = await get_scan_validation_client().get_scan_history(event_id, page=page, limit=limit)
    return Envelope(data=ScanHistoryPage.model_validate(history))

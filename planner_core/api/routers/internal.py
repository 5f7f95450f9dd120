"""Service-to-service endpoints guarded by the internal token."""

from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from planner_core.api.dependencies import get_scan_validation_service, require_internal_token
from planner_core.clients.auth import get_permission_checker
from planner_core.schemas.envelope import Envelope
from planner_core.schemas.scan import ScanValidationRequest, ScanValidationResult
from planner_core.services.scans import ScanValidationService

LOGGER = logging.getLogger("planner_core.api.internal")

router = APIRouter(dependencies=[Depends(require_internal_token)])


@router.post("/scans/validate", response_model=Envelope[ScanValidationResult])
def validate_scanned_ticket(
    payload: ScanValidationRequest,
    service: ScanValidationService = Depends(get_scan_validation_service),
) -> Envelope[ScanValidationResult]:
    context = service.validate(payload.ticket_id, payload.event_id, payload.scan_context)
    ticket, guest = context.ticket, context.guest
    return Envelope(
        data=ScanValidationResult(
            ticket_id=ticket.id,
            ticket_code=ticket.ticket_code,
            event_id=context.event.id,
            is_validated=ticket.is_validated,
            validated_at=ticket.validated_at,
            guest={
                "id": guest.id,
                "first_name": guest.first_name,
                "last_name": guest.last_name,
                "email": guest.email,
            },
        ),
        message="Ticket validated",
    )


@router.post("/users/{user_id}/status-changed", response_model=Envelope[Dict[str, int]])
def user_status_changed(user_id: int) -> Envelope[Dict[str, int]]:
    get_permission_checker().invalidate_user(user_id)
    LOGGER.info("permission_cache_invalidated", extra={"user_id": user_id})
    return Envelope(data={"user_id": user_id})

"""Inbound callbacks from the ticket generator."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from fastapi import APIRouter, BackgroundTasks, Request
from starlette.concurrency import run_in_threadpool

from planner_core.clients.notifications import (
    JOB_COMPLETED_TEMPLATE,
    JOB_FAILED_TEMPLATE,
    get_notification_client,
    notify_safely,
)
from planner_core.core.config import get_settings
from planner_core.core.database import session_scope
from planner_core.models.generation_job import JobStatus
from planner_core.schemas.envelope import Envelope
from planner_core.webhooks.reconciler import ReconcileResult, TicketWebhookReconciler

LOGGER = logging.getLogger("planner_core.api.webhooks")

router = APIRouter()


@router.post("/ticket-generation-webhook", response_model=Envelope[Dict[str, Any]])
@router.post("/ticket-webhook", response_model=Envelope[Dict[str, Any]], include_in_schema=False)
async def receive_ticket_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
) -> Envelope[Dict[str, Any]]:
    raw_body = await request.body()
    result = await run_in_threadpool(_reconcile, raw_body, dict(request.headers))

    if result.terminal_status is not None and not result.replayed and result.created_by is not None:
        background_tasks.add_task(_notify_owner, result)
    return Envelope(data=result.receipt, message="Webhook processed")


def _reconcile(raw_body: bytes, headers: Mapping[str, str]) -> ReconcileResult:
    with session_scope() as session:
        return TicketWebhookReconciler(session, get_settings().webhook_secret).handle(raw_body, headers)


async def _notify_owner(result: ReconcileResult) -> None:
    template = JOB_COMPLETED_TEMPLATE if result.terminal_status is JobStatus.COMPLETED else JOB_FAILED_TEMPLATE
    await notify_safely(
        get_notification_client(),
        template,
        result.created_by,
        {
            "job_id": result.job_id,
            "event_id": result.event_id,
            "status": result.receipt.get("status"),
            "tickets_updated": result.receipt.get("tickets_updated"),
        },
    )

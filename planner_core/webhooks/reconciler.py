"""Apply ticket generator callbacks to jobs and tickets exactly once.

Pipeline: verify the signature, normalize the body, claim the delivery by its
dedup key, then apply the outcome to the job inside one transaction. A delivery
whose outcome is final replays the stored response without touching anything.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from planner_core.core.errors import ServiceError, StateConflictError, WebhookSignatureError
from planner_core.core.logging import request_id_var
from planner_core.models.generation_job import JobStatus, TicketGenerationJob
from planner_core.models.webhook_delivery import DeliveryOutcome
from planner_core.schemas.webhook import (
    TICKET_COMPLETED,
    TICKET_FAILED,
    TICKET_PARTIAL,
    CanonicalWebhook,
    WebhookReceipt,
)
from planner_core.services.job_store import (
    DEFAULT_FAILURE_MESSAGE,
    JobNotFoundError,
    TicketGenerationJobStore,
)
from planner_core.webhooks.deliveries import DeliveryLedger
from planner_core.webhooks.normalizer import PayloadValidationError, dedup_key, normalize_payload
from planner_core.webhooks.signature import SIGNATURE_HEADER, require_valid_signature

LOGGER = logging.getLogger("planner_core.webhooks.reconciler")

TICKET_GENERATOR_SOURCE = "ticket_generator"


@dataclass
class ReconcileResult:
    receipt: Dict[str, Any]
    outcome: DeliveryOutcome
    replayed: bool = False
    terminal_status: Optional[JobStatus] = None
    job_id: Optional[int] = None
    event_id: Optional[int] = None
    created_by: Optional[int] = None


def partial_failure_message(failed: int, total: int) -> str:
    return f"{failed} tickets échoués sur {total}"


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


class TicketWebhookReconciler:
    """Reconciles one inbound delivery. Owns its own commits."""

    def __init__(self, session: Session, secret: Optional[str]) -> None:
        self._session = session
        self._secret = secret
        self._store = TicketGenerationJobStore(session)
        self._ledger = DeliveryLedger(session, TICKET_GENERATOR_SOURCE)

    def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> ReconcileResult:
        started = time.perf_counter()
        request_id = header_value(headers, "x-request-id") or request_id_var.get()

        try:
            require_valid_signature(raw_body, header_value(headers, SIGNATURE_HEADER), self._secret)
        except WebhookSignatureError as exc:
            LOGGER.warning(
                "ticket_webhook_rejected",
                extra={"code": exc.code, "sender": header_value(headers, "x-service-name")},
            )
            raise

        payload = self._parse(raw_body)
        LOGGER.info(
            "ticket_webhook_received",
            extra={"job_id": payload.job_id, "event_type": payload.event_type, "tickets": len(payload.tickets)},
        )

        delivery, replay = self._ledger.claim(
            dedup_key(payload),
            subject_id=str(payload.job_id),
            event_type=payload.event_type,
            payload=payload.model_dump(mode="json"),
            request_id=request_id,
        )
        if replay:
            return ReconcileResult(
                receipt=dict(delivery.response_body or {}),
                outcome=delivery.outcome,
                replayed=True,
                job_id=payload.numeric_job_id(),
            )

        delivery_id = delivery.id
        try:
            result = self._apply(payload, started)
            self._session.commit()
        except Exception as exc:
            self._session.rollback()
            self._ledger.fail(delivery_id, exc, _elapsed_ms(started))
            if isinstance(exc, ServiceError):
                raise
            LOGGER.exception("ticket_webhook_failed", extra={"job_id": payload.job_id})
            raise ServiceError("Webhook processing failed", code="INTERNAL_ERROR", status_code=500) from exc

        self._ledger.complete(delivery_id, result.outcome, result.receipt, result.receipt["processing_time_ms"])
        LOGGER.info(
            "ticket_webhook_applied",
            extra={
                "job_id": payload.job_id,
                "event_type": payload.event_type,
                "outcome": result.outcome.value,
                "tickets_updated": result.receipt["tickets_updated"],
            },
        )
        return result

    @staticmethod
    def _parse(raw_body: bytes) -> CanonicalWebhook:
        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise PayloadValidationError("Webhook body is not valid JSON") from exc
        return normalize_payload(body)

    def _apply(self, payload: CanonicalWebhook, started: float) -> ReconcileResult:
        job_id = payload.numeric_job_id()
        job = self._store.lock(job_id) if job_id is not None else None
        if job is None:
            raise JobNotFoundError(f"Ticket generation job {payload.job_id} not found")

        if not payload.is_handled:
            LOGGER.info(
                "ticket_webhook_ignored",
                extra={"job_id": job.id, "event_type": payload.event_type},
            )
            return self._result(payload, job, DeliveryOutcome.IGNORED, 0, started)

        if job.job_status is JobStatus.PENDING:
            job = self._store.transition(job.id, JobStatus.PENDING, JobStatus.PROCESSING) or self._store.lock(job.id)

        if job.job_status.is_terminal:
            updated = self._store.apply_ticket_outcomes(
                job.id,
                payload.tickets,
                late=True,
                force_failed=payload.event_type == TICKET_FAILED,
            )
            LOGGER.info(
                "ticket_webhook_applied_late",
                extra={"job_id": job.id, "job_status": job.status, "event_type": payload.event_type},
            )
            return self._result(payload, job, DeliveryOutcome.APPLIED_LATE, updated, started)

        updated = self._store.apply_ticket_outcomes(
            job.id,
            payload.tickets,
            force_failed=payload.event_type == TICKET_FAILED,
        )
        summary = payload.summary
        if payload.event_type == TICKET_COMPLETED:
            moved = self._store.transition(
                job.id,
                JobStatus.PROCESSING,
                JobStatus.COMPLETED,
                tickets_processed=summary.successful,
            )
        elif payload.event_type == TICKET_FAILED:
            if not payload.tickets:
                updated = self._store.mark_job_tickets_failed(job.id)
            moved = self._store.transition(
                job.id,
                JobStatus.PROCESSING,
                JobStatus.FAILED,
                error_message=payload.error or DEFAULT_FAILURE_MESSAGE,
            )
        elif payload.event_type == TICKET_PARTIAL:
            total = summary.total or job.tickets_total
            moved = self._store.transition(
                job.id,
                JobStatus.PROCESSING,
                JobStatus.COMPLETED,
                tickets_processed=summary.successful,
                error_message=partial_failure_message(summary.failed, total),
            )
        else:
            raise AssertionError(f"unhandled event type {payload.event_type}")

        if moved is None:
            raise StateConflictError(f"Job {job.id} changed state during reconciliation")
        return self._result(payload, moved, DeliveryOutcome.OK, updated, started, terminal=moved.job_status)

    @staticmethod
    def _result(
        payload: CanonicalWebhook,
        job: TicketGenerationJob,
        outcome: DeliveryOutcome,
        updated: int,
        started: float,
        *,
        terminal: Optional[JobStatus] = None,
    ) -> ReconcileResult:
        receipt = WebhookReceipt(
            job_id=payload.job_id,
            event_type=payload.event_type,
            status=job.status,
            outcome=outcome.value,
            processing_time_ms=_elapsed_ms(started),
            tickets_updated=updated,
            tickets_received=len(payload.tickets),
        )
        return ReconcileResult(
            receipt=receipt.model_dump(mode="json"),
            outcome=outcome,
            terminal_status=terminal,
            job_id=job.id,
            event_id=job.event_id,
            created_by=job.created_by,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)

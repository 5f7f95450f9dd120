"""Randomised delivery sequences never take a job off the allowed edges."""

from __future__ import annotations

import json
import random

import pytest

from planner_core.core.database import session_scope
from planner_core.core.errors import ServiceError
from planner_core.models import TicketGenerationJob
from planner_core.models.generation_job import ALLOWED_TRANSITIONS, JobStatus
from planner_core.services.generation_jobs import GenerationJobService
from planner_core.webhooks.reconciler import TicketWebhookReconciler
from planner_core.webhooks.signature import SIGNATURE_HEADER, compute_signature

SECRET = "test-webhook-secret"
ACTIONS = ("completed", "failed", "partial", "duplicate", "cancel", "retry")


def _snapshot(job_id: int) -> tuple[JobStatus, int, int]:
    with session_scope() as session:
        job = session.get(TicketGenerationJob, job_id)
        return job.job_status, job.tickets_processed, job.tickets_total


def _body(job_id: int, action: str, ticket_ids: list[int], step: int) -> bytes:
    tickets = []
    for index, ticket_id in enumerate(ticket_ids):
        ok = action == "completed" or (action == "partial" and index == 0)
        entry = {"ticket_id": ticket_id, "success": ok}
        if ok:
            entry.update(qr_code_data=f"QR-{step}-{index}", file_url=f"u{step}", file_path=f"p{step}")
        else:
            entry["error"] = "render failed"
        tickets.append(entry)
    successful = sum(1 for entry in tickets if entry["success"])
    body = {
        "eventType": f"ticket.{action}",
        "jobId": job_id,
        "status": "failed" if action == "failed" else "completed",
        "timestamp": f"2026-05-01T10:{step:02d}:00Z",
        "data": {
            "tickets": tickets,
            "summary": {"total": len(tickets), "successful": successful, "failed": len(tickets) - successful},
        },
    }
    return json.dumps(body).encode("utf-8")


def _deliver(raw: bytes) -> None:
    with session_scope() as session:
        reconciler = TicketWebhookReconciler(session, SECRET)
        reconciler.handle(raw, {SIGNATURE_HEADER: compute_signature(SECRET, raw)})


def _is_legal(before: JobStatus, after: JobStatus) -> bool:
    if before is after or (before, after) in ALLOWED_TRANSITIONS:
        return True
    # a webhook on a pending job passes through processing first
    return before is JobStatus.PENDING and (JobStatus.PROCESSING, after) in ALLOWED_TRANSITIONS


@pytest.mark.parametrize("seed", range(12))
def test_random_sequences_respect_transitions(make_job, seed) -> None:
    rng = random.Random(seed)
    job_id, ticket_ids = make_job(event_guest_ids=(100, 101, 102))
    last_body = None

    for step in range(rng.randint(4, 14)):
        action = rng.choice(ACTIONS)
        before, _, _ = _snapshot(job_id)

        try:
            if action == "duplicate":
                if last_body is None:
                    continue
                _deliver(last_body)
            elif action in ("cancel", "retry"):
                with session_scope() as session:
                    service = GenerationJobService(session)
                    if action == "cancel":
                        service.cancel_job(job_id, actor_id=10)
                    else:
                        service.retry_job(job_id, actor_id=10)
            else:
                last_body = _body(job_id, action, ticket_ids, step)
                _deliver(last_body)
        except ServiceError as exc:
            assert exc.status_code == 409, f"seed={seed} step={step} action={action}: {exc.code}"

        after, processed, total = _snapshot(job_id)
        assert _is_legal(before, after), f"seed={seed} step={step} action={action}: {before} -> {after}"
        assert 0 <= processed <= total

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy import func, select

from planner_core.api.routers import webhooks as webhook_routes
from planner_core.clients.notifications import JOB_COMPLETED_TEMPLATE, JOB_FAILED_TEMPLATE
from planner_core.core.database import session_scope
from planner_core.models import SystemLog, Ticket, TicketGenerationJob, WebhookDelivery
from planner_core.models.base import utcnow
from planner_core.models.webhook_delivery import DeliveryOutcome
from planner_core.services.job_store import TicketGenerationJobStore
from planner_core.webhooks.normalizer import dedup_key, normalize_payload

WEBHOOK_PATH = "/api/internal/ticket-generation-webhook"
JOBS_PATH = "/api/v1/tickets/generation-jobs"


def _create_job(client: TestClient, headers: dict) -> tuple[int, list[int]]:
    response = client.post(
        JOBS_PATH,
        json={"event_id": 42, "ticket_type_id": 7, "event_guest_ids": [100, 101]},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    job_id = response.json()["data"]["id"]
    with session_scope() as session:
        ticket_ids = [ticket.id for ticket in TicketGenerationJobStore(session).tickets_for_job(job_id)]
    return job_id, ticket_ids


def _artifacts(ticket_id: int, index: int, **extra) -> dict:
    return {
        "ticket_id": ticket_id,
        "qr_code_data": f"QR{index}",
        "file_url": f"u{index}",
        "file_path": f"p{index}",
        **extra,
    }


def _body(job_id: int, event_type: str, tickets: list, summary: dict, **data) -> dict:
    status = "failed" if event_type == "ticket.failed" else "completed"
    return {
        "eventType": event_type,
        "jobId": job_id,
        "status": status,
        "timestamp": "2026-05-01T10:00:00Z",
        "data": {"tickets": tickets, "summary": summary, "processingTime": 1200, **data},
    }


def _completed_body(job_id: int, ticket_ids: list[int]) -> dict:
    return _body(
        job_id,
        "ticket.completed",
        [_artifacts(ticket_id, index) for index, ticket_id in enumerate(ticket_ids, start=1)],
        {"total": 2, "successful": 2, "failed": 0},
    )


def _deliver(client: TestClient, sign, body=None, *, raw: bytes | None = None, signature: str | None = None,
             path: str = WEBHOOK_PATH):
    raw = raw if raw is not None else json.dumps(body).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": signature if signature is not None else sign(raw),
        "X-Service-Name": "ticket-generator",
    }
    return client.post(path, content=raw, headers=headers)


def _job(job_id: int) -> dict:
    with session_scope() as session:
        job = session.get(TicketGenerationJob, job_id)
        return {
            "status": job.status,
            "tickets_processed": job.tickets_processed,
            "error_message": job.error_message,
            "attempt_count": job.attempt_count,
            "started_at": job.started_at,
        }


def _tickets(job_id: int) -> list[dict]:
    with session_scope() as session:
        return [
            {
                "id": ticket.id,
                "status": ticket.status,
                "qr_code_data": ticket.qr_code_data,
                "ticket_file_url": ticket.ticket_file_url,
                "ticket_file_path": ticket.ticket_file_path,
                "generation_job_id": ticket.generation_job_id,
            }
            for ticket in TicketGenerationJobStore(session).tickets_for_job(job_id)
        ]


def _row_counts() -> dict:
    with session_scope() as session:
        return {
            model.__tablename__: session.scalar(select(func.count()).select_from(model))
            for model in (TicketGenerationJob, Ticket, WebhookDelivery, SystemLog)
        }


def _deliveries() -> list[WebhookDelivery]:
    with session_scope() as session:
        rows = list(session.scalars(select(WebhookDelivery).order_by(WebhookDelivery.id)))
        session.expunge_all()
        return rows


def test_happy_path(client, seeded, organizer_headers, sign, transport, notifier) -> None:
    create = client.post(
        JOBS_PATH,
        json={"event_id": 42, "ticket_type_id": 7, "event_guest_ids": [100, 101]},
        headers=organizer_headers,
    )
    assert create.status_code == 201
    created = create.json()["data"]
    assert created["status"] == "pending"
    assert created["tickets_total"] == 2
    job_id = created["id"]

    assert [ticket["status"] for ticket in _tickets(job_id)] == ["pending", "pending"]
    assert _job(job_id)["status"] == "processing"
    assert len(transport.envelopes) == 1

    ticket_ids = [ticket["id"] for ticket in _tickets(job_id)]
    response = _deliver(client, sign, _completed_body(job_id, ticket_ids))

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["data"]["tickets_updated"] == 2
    assert body["data"]["tickets_received"] == 2
    assert body["data"]["job_id"] == job_id
    assert body["data"]["event_type"] == "ticket.completed"
    assert "processing_time_ms" in body["data"]

    job = _job(job_id)
    assert job["status"] == "completed"
    assert job["tickets_processed"] == 2
    tickets = _tickets(job_id)
    assert [(t["qr_code_data"], t["ticket_file_url"], t["ticket_file_path"]) for t in tickets] == [
        ("QR1", "u1", "p1"),
        ("QR2", "u2", "p2"),
    ]
    assert all(t["status"] == "generated" and t["generation_job_id"] == job_id for t in tickets)

    (delivery,) = _deliveries()
    assert delivery.outcome is DeliveryOutcome.OK
    assert delivery.response_body == body["data"]

    assert [(template, user_id) for template, user_id, _ in notifier.sent] == [(JOB_COMPLETED_TEMPLATE, 10)]


def test_partial_delivery(client, seeded, organizer_headers, sign) -> None:
    job_id, (first, second) = _create_job(client, organizer_headers)
    body = _body(
        job_id,
        "ticket.partial",
        [_artifacts(first, 1, success=True), {"ticket_id": second, "success": False}],
        {"total": 2, "successful": 1, "failed": 1},
    )

    response = _deliver(client, sign, body)

    assert response.status_code == 200
    job = _job(job_id)
    assert job["status"] == "completed"
    assert job["tickets_processed"] == 1
    assert job["error_message"] == "1 tickets échoués sur 2"
    tickets = {ticket["id"]: ticket for ticket in _tickets(job_id)}
    assert tickets[first]["qr_code_data"] == "QR1"
    assert tickets[first]["status"] == "generated"
    assert tickets[second]["status"] == "failed"
    assert tickets[second]["ticket_file_url"] is None


def test_duplicate_delivery_is_replayed(client, seeded, organizer_headers, sign, notifier) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    body = _completed_body(job_id, ticket_ids)

    first = _deliver(client, sign, body)
    counts = _row_counts()
    tickets = _tickets(job_id)
    job = _job(job_id)

    second = _deliver(client, sign, body)

    assert second.status_code == 200
    assert second.json() == first.json()
    assert _row_counts() == counts
    assert _tickets(job_id) == tickets
    assert _job(job_id) == job
    assert len(notifier.sent) == 1


def test_tampered_body_is_rejected(client, seeded, organizer_headers, sign) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    raw = json.dumps(_completed_body(job_id, ticket_ids)).encode("utf-8")
    tampered = raw.replace(b"QR1", b"QR9", 1)
    counts = _row_counts()

    response = _deliver(client, sign, raw=tampered, signature=sign(raw))

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Webhook signature invalid", "code": "INVALID_SIGNATURE"}
    assert _row_counts() == counts
    assert _deliveries() == []
    assert _job(job_id)["status"] == "processing"


def test_missing_signature(client, seeded, organizer_headers) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    response = client.post(WEBHOOK_PATH, json=_completed_body(job_id, ticket_ids))

    assert response.status_code == 401
    assert response.json()["code"] == "MISSING_SIGNATURE"


def test_late_webhook_after_cancel(client, seeded, organizer_headers, sign, notifier) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    cancel = client.post(f"{JOBS_PATH}/{job_id}/cancel", headers=organizer_headers)
    assert cancel.status_code == 200
    assert cancel.json()["data"]["status"] == "failed"
    assert cancel.json()["data"]["error_message"] == "cancelled by user"

    response = _deliver(client, sign, _completed_body(job_id, ticket_ids))

    assert response.status_code == 200
    assert response.json()["data"]["outcome"] == "applied_late"
    job = _job(job_id)
    assert job["status"] == "failed"
    assert job["error_message"] == "cancelled by user"
    assert [ticket["qr_code_data"] for ticket in _tickets(job_id)] == ["QR1", "QR2"]
    (delivery,) = _deliveries()
    assert delivery.outcome is DeliveryOutcome.APPLIED_LATE
    assert notifier.sent == []


def test_retry_after_failure(client, seeded, organizer_headers, sign, transport, notifier) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    failed = _deliver(
        client,
        sign,
        _body(job_id, "ticket.failed", [], {"total": 2, "successful": 0, "failed": 2}, error="renderer crashed"),
    )
    assert failed.status_code == 200
    assert _job(job_id)["error_message"] == "renderer crashed"
    assert {ticket["status"] for ticket in _tickets(job_id)} == {"failed"}
    assert notifier.sent[0][0] == JOB_FAILED_TEMPLATE

    retry = client.post(f"{JOBS_PATH}/{job_id}/retry", headers=organizer_headers)

    assert retry.status_code == 200, retry.text
    data = retry.json()["data"]
    assert data["status"] == "pending"
    assert data["attempt_count"] == 2
    assert data["error_message"] is None
    assert data["started_at"] is None
    assert len(transport.envelopes) == 2
    assert transport.envelopes[1].attempt == 2
    assert len(transport.envelopes[1].tickets) == 2

    completed = _deliver(client, sign, _completed_body(job_id, ticket_ids))

    assert completed.status_code == 200
    assert completed.json()["data"]["outcome"] == "ok"
    job = _job(job_id)
    assert job["status"] == "completed"
    assert job["attempt_count"] == 2
    assert job["tickets_processed"] == 2


def test_delivery_in_progress_returns_conflict(client, seeded, organizer_headers, sign) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    body = _completed_body(job_id, ticket_ids)
    with session_scope() as session:
        session.add(
            WebhookDelivery(
                dedup_key=dedup_key(normalize_payload(body)),
                job_id=str(job_id),
                event_type="ticket.completed",
                outcome=DeliveryOutcome.IN_PROGRESS,
            )
        )

    response = _deliver(client, sign, body)

    assert response.status_code == 409
    assert response.json()["code"] == "IN_PROGRESS"
    assert _job(job_id)["status"] == "processing"


def test_unknown_job_is_recorded_as_error_and_reclaimed(client, seeded, sign) -> None:
    body = _completed_body(9999, [1, 2])

    first = _deliver(client, sign, body)
    second = _deliver(client, sign, body)

    assert first.status_code == 404
    assert first.json()["code"] == "JOB_NOT_FOUND"
    assert second.status_code == 404
    (delivery,) = _deliveries()
    assert delivery.outcome is DeliveryOutcome.ERROR
    assert delivery.attempts == 2
    assert "JobNotFoundError" in delivery.error_message


def test_unhandled_event_type_is_ignored(client, seeded, organizer_headers, sign) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    body = _completed_body(job_id, ticket_ids)
    body["eventType"] = "ticket.progress"

    response = _deliver(client, sign, body)

    assert response.status_code == 200
    assert response.json()["data"]["outcome"] == "ignored"
    assert response.json()["data"]["tickets_updated"] == 0
    assert _job(job_id)["status"] == "processing"
    assert {ticket["status"] for ticket in _tickets(job_id)} == {"pending"}


def test_legacy_payload_on_alias_path(client, seeded, organizer_headers, sign) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    body = {
        "job_id": job_id,
        "status": "completed",
        "timestamp": "2026-05-01T10:00:00Z",
        "tickets": [_artifacts(ticket_id, index) for index, ticket_id in enumerate(ticket_ids, start=1)],
        "summary": {"total": 2, "successful": 2, "failed": 0},
        "processing_time_ms": 900,
    }

    response = _deliver(client, sign, body, path="/api/internal/ticket-webhook")

    assert response.status_code == 200
    assert _job(job_id)["status"] == "completed"


def test_missing_fields_and_bad_json(client, seeded, sign) -> None:
    missing = _deliver(client, sign, {"jobId": 1, "status": "completed", "data": {}})
    assert missing.status_code == 400
    assert missing.json()["code"] == "MISSING_REQUIRED_FIELDS"
    assert missing.json()["details"] == {"missing": ["timestamp"]}

    garbage = _deliver(client, sign, raw=b"{not json")
    assert garbage.status_code == 400
    assert garbage.json()["code"] == "MISSING_REQUIRED_FIELDS"
    assert _deliveries() == []


def test_failure_while_applying_rolls_back(client, seeded, organizer_headers, sign, monkeypatch) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)

    def explode(self, *args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(TicketGenerationJobStore, "apply_ticket_outcomes", explode)

    response = _deliver(client, sign, _completed_body(job_id, ticket_ids))

    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"
    assert _job(job_id)["status"] == "processing"
    (delivery,) = _deliveries()
    assert delivery.outcome is DeliveryOutcome.ERROR
    assert "disk full" in delivery.error_message


def test_failed_event_never_writes_artifacts(client, seeded, organizer_headers, sign) -> None:
    job_id, (first, second) = _create_job(client, organizer_headers)
    body = _body(
        job_id,
        "ticket.failed",
        [_artifacts(first, 1, success=True), {"ticket_id": second, "success": False, "error": "render failed"}],
        {"total": 2, "successful": 1, "failed": 1},
        error="generator crashed",
    )

    response = _deliver(client, sign, body)

    assert response.status_code == 200, response.text
    assert _job(job_id)["status"] == "failed"
    for ticket in _tickets(job_id):
        assert ticket["status"] == "failed"
        assert ticket["qr_code_data"] is None
        assert ticket["ticket_file_url"] is None
        assert ticket["ticket_file_path"] is None


def test_abandoned_in_progress_delivery_is_reclaimed(client, seeded, organizer_headers, sign) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    body = _completed_body(job_id, ticket_ids)
    abandoned_at = utcnow() - timedelta(minutes=10)
    with session_scope() as session:
        session.add(
            WebhookDelivery(
                dedup_key=dedup_key(normalize_payload(body)),
                job_id=str(job_id),
                event_type="ticket.completed",
                outcome=DeliveryOutcome.IN_PROGRESS,
                created_at=abandoned_at,
                updated_at=abandoned_at,
            )
        )

    response = _deliver(client, sign, body)

    assert response.status_code == 200, response.text
    assert _job(job_id)["status"] == "completed"
    (delivery,) = _deliveries()
    assert delivery.outcome is DeliveryOutcome.OK
    assert delivery.attempts == 2


def test_reconciliation_owns_its_session(client, seeded, organizer_headers, sign, monkeypatch) -> None:
    job_id, ticket_ids = _create_job(client, organizer_headers)
    scopes = []

    @contextmanager
    def recording_scope():
        entry = {"thread": threading.get_ident(), "closed": False}
        scopes.append(entry)
        with session_scope() as session:
            yield session
        entry["closed"] = True

    monkeypatch.setattr(webhook_routes, "session_scope", recording_scope)

    response = _deliver(client, sign, _completed_body(job_id, ticket_ids))

    assert response.status_code == 200, response.text
    assert len(scopes) == 1
    assert scopes[0]["closed"] is True
    assert scopes[0]["thread"] != threading.get_ident()
    assert _job(job_id)["status"] == "completed"

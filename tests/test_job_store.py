from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from planner_core.core.database import session_scope
from planner_core.core.errors import StateConflictError, ValidationFailedError
from planner_core.models.generation_job import CANCELLED_MESSAGE, JobStatus
from planner_core.models.ticket import TicketStatus
from planner_core.schemas.webhook import TicketOutcome
from planner_core.services.catalog import EventNotFoundError
from planner_core.services.job_store import InvalidTransitionError, TicketGenerationJobStore


def _outcome(ticket_id: int, *, success: bool = True, suffix: str = "") -> TicketOutcome:
    if not success:
        return TicketOutcome(ticket_id=ticket_id, success=False, error="boom")
    return TicketOutcome(
        ticket_id=ticket_id,
        success=True,
        qr_code_data=f"QR{ticket_id}{suffix}",
        file_url=f"https://cdn.example.com/{ticket_id}{suffix}.pdf",
        file_path=f"tickets/{ticket_id}{suffix}.pdf",
    )


def test_create_inserts_pending_job_and_tickets(seeded) -> None:
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        job = store.create(event_id=42, ticket_type_id=7, event_guest_ids=[100, 101], created_by=10)
        tickets = store.tickets_for_job(job.id)

        assert job.status == JobStatus.PENDING.value
        assert job.tickets_total == 2
        assert job.tickets_processed == 0
        assert job.attempt_count == 1
        assert job.details["event_guest_ids"] == [100, 101]
        assert [ticket.event_guest_id for ticket in tickets] == [100, 101]
        assert all(ticket.status == TicketStatus.PENDING.value for ticket in tickets)
        assert len({ticket.ticket_code for ticket in tickets}) == 2


@pytest.mark.parametrize(
    "kwargs",
    [
        {"event_guest_ids": []},
        {"event_guest_ids": [100, 100]},
        {"event_guest_ids": [100, 200]},
        {"ticket_type_id": 8},
    ],
)
def test_create_rejects_invalid_input(seeded, kwargs) -> None:
    arguments = {"event_id": 42, "ticket_type_id": 7, "event_guest_ids": [100], "created_by": 10}
    arguments.update(kwargs)
    with session_scope() as session:
        with pytest.raises(ValidationFailedError) as exc_info:
            TicketGenerationJobStore(session).create(**arguments)
    assert exc_info.value.code == "INVALID_INPUT"


def test_create_for_unknown_event(seeded) -> None:
    with session_scope() as session:
        with pytest.raises(EventNotFoundError):
            TicketGenerationJobStore(session).create(event_id=999, ticket_type_id=7, event_guest_ids=[100], created_by=1)


def test_running_correlation_id_conflicts(seeded) -> None:
    correlation_id = uuid.uuid4()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        store.create(event_id=42, ticket_type_id=7, event_guest_ids=[100], created_by=1, correlation_id=correlation_id)
        with pytest.raises(StateConflictError) as exc_info:
            store.create(event_id=42, ticket_type_id=7, event_guest_ids=[101], created_by=1, correlation_id=correlation_id)
    assert exc_info.value.code == "CONFLICT"


def test_transition_is_compare_and_set(make_job) -> None:
    job_id, _ = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        moved = store.transition(job_id, JobStatus.PENDING, JobStatus.PROCESSING)
        assert moved is not None
        assert moved.started_at is not None

        assert store.transition(job_id, JobStatus.PENDING, JobStatus.PROCESSING) is None
        assert store.get_by_id(job_id).status == JobStatus.PROCESSING.value


def test_transition_rejects_edges_outside_the_state_machine(make_job) -> None:
    job_id, _ = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        with pytest.raises(InvalidTransitionError):
            store.transition(job_id, JobStatus.PENDING, JobStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            store.transition(job_id, JobStatus.COMPLETED, JobStatus.PENDING)


def test_completed_clamps_tickets_processed(make_job) -> None:
    job_id, _ = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        store.transition(job_id, JobStatus.PENDING, JobStatus.PROCESSING)
        job = store.transition(job_id, JobStatus.PROCESSING, JobStatus.COMPLETED, tickets_processed=5)
        assert job.tickets_processed == 2
        assert job.completed_at is not None


def test_retry_edge_resets_run_fields(make_job) -> None:
    job_id, _ = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        store.transition(job_id, JobStatus.PENDING, JobStatus.PROCESSING)
        store.transition(job_id, JobStatus.PROCESSING, JobStatus.FAILED, error_message="printer on fire")
        job = store.transition(job_id, JobStatus.FAILED, JobStatus.PENDING)

        assert job.status == JobStatus.PENDING.value
        assert job.attempt_count == 2
        assert job.error_message is None
        assert job.started_at is None
        assert job.completed_at is None


def test_cancel_only_from_non_terminal(make_job) -> None:
    job_id, _ = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        job = store.cancel(job_id, updated_by=10)
        assert job.status == JobStatus.FAILED.value
        assert job.error_message == CANCELLED_MESSAGE
        assert job.is_cancelled
        assert job.details["cancelled_by"] == 10

        assert store.cancel(job_id, updated_by=10) is None


def test_apply_outcomes_writes_artifacts_and_failures(make_job) -> None:
    job_id, (first, second) = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        updated = store.apply_ticket_outcomes(job_id, [_outcome(first), _outcome(second, success=False)])
        tickets = {ticket.id: ticket for ticket in store.tickets_for_job(job_id)}

        assert updated == 2
        assert tickets[first].status == TicketStatus.GENERATED.value
        assert tickets[first].qr_code_data == f"QR{first}"
        assert tickets[first].generated_at is not None
        assert tickets[second].status == TicketStatus.FAILED.value
        assert tickets[second].ticket_file_url is None


def test_success_without_all_artifacts_is_a_failure(make_job) -> None:
    job_id, (first, _) = make_job()
    incomplete = TicketOutcome(ticket_id=first, success=True, qr_code_data="QR", file_url="u")
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        store.apply_ticket_outcomes(job_id, [incomplete])
        ticket = store.tickets_for_job(job_id)[0]
        assert ticket.status == TicketStatus.FAILED.value
        assert ticket.qr_code_data is None


def test_outcomes_for_foreign_tickets_are_ignored(make_job) -> None:
    job_id, _ = make_job(event_guest_ids=[100])
    _, (foreign,) = make_job(event_guest_ids=[101])
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        assert store.apply_ticket_outcomes(job_id, [_outcome(foreign), _outcome(12345)]) == 0


def test_validated_tickets_keep_their_artifacts(make_job) -> None:
    job_id, (first, _) = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        store.apply_ticket_outcomes(job_id, [_outcome(first)])
        ticket = store.tickets_for_job(job_id)[0]
        ticket.is_validated = True

    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        updated = store.apply_ticket_outcomes(job_id, [_outcome(first, suffix="-v2"), _outcome(first, success=False)])
        ticket = store.tickets_for_job(job_id)[0]

        assert updated == 0
        assert ticket.qr_code_data == f"QR{first}"
        assert ticket.status == TicketStatus.GENERATED.value


def test_late_outcomes_never_downgrade_generated_tickets(make_job) -> None:
    job_id, (first, _) = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        store.apply_ticket_outcomes(job_id, [_outcome(first)])
        store.apply_ticket_outcomes(job_id, [_outcome(first, success=False)], late=True)
        assert store.tickets_for_job(job_id)[0].status == TicketStatus.GENERATED.value


def test_failed_ticket_reset_and_bulk_fail(make_job) -> None:
    job_id, _ = make_job()
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        assert store.mark_job_tickets_failed(job_id) == 2
        assert store.reset_failed_tickets(job_id) == 2
        assert {ticket.status for ticket in store.tickets_for_job(job_id)} == {TicketStatus.PENDING.value}


def test_listing_stats_and_stale_pending(make_job) -> None:
    first, _ = make_job(event_guest_ids=[100])
    second, _ = make_job(event_guest_ids=[101])
    with session_scope() as session:
        store = TicketGenerationJobStore(session)
        store.cancel(second, updated_by=1)

        page = store.list_jobs(page=1, limit=1)
        assert page.total == 2
        assert page.pages == 2
        assert len(page.items) == 1

        assert [job.id for job in store.list_jobs(status="failed").items] == [second]
        assert [job.id for job in store.list_failed()] == [second]

        stats = store.stats(42)
        assert stats["pending"] == 1
        assert stats["failed"] == 1
        assert stats["total"] == 2
        assert stats["tickets_total"] == 2

        future = store.get_by_id(first).updated_at + timedelta(minutes=1)
        assert [job.id for job in store.find_stale_pending(future)] == [first]
        assert store.find_stale_pending(store.get_by_id(first).updated_at - timedelta(minutes=1)) == []

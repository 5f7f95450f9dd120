"""Use cases behind the generation job routes."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from planner_core.core.errors import StateConflictError
from planner_core.models.event import Event, EventGuest
from planner_core.models.generation_job import JobStatus, TicketGenerationJob
from planner_core.models.ticket import Ticket, TicketStatus
from planner_core.schemas.generation_job import GenerationJobCreate
from planner_core.services.catalog import EventCatalog
from planner_core.services.job_store import JobPage, TicketGenerationJobStore
from planner_core.services.system_logs import SystemLogService

LOGGER = logging.getLogger("planner_core.services.generation_jobs")


class GenerationJobService:
    """Job lifecycle for API callers.

    Mutations commit before returning so that a dispatch scheduled afterwards
    always sees the committed row.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._catalog = EventCatalog(session)
        self._store = TicketGenerationJobStore(session, self._catalog)
        self._system_logs = SystemLogService(session)

    def create_job(self, request: GenerationJobCreate, *, actor_id: Optional[int]) -> TicketGenerationJob:
        job = self._store.create(
            event_id=request.event_id,
            ticket_type_id=request.ticket_type_id,
            event_guest_ids=request.event_guest_ids,
            created_by=actor_id,
            ticket_template_id=request.ticket_template_id,
            correlation_id=request.correlation_id,
        )
        self._system_logs.record(
            action="job.create",
            actor_id=actor_id,
            resource_type="ticket_generation_job",
            resource_id=job.id,
            message=f"Ticket generation requested for {job.tickets_total} guests",
            context={"event_id": job.event_id, "tickets_total": job.tickets_total},
            correlation_id=str(job.correlation_id),
        )
        self._session.commit()
        return job

    def get_job(self, job_id: int) -> Tuple[TicketGenerationJob, List[Ticket]]:
        job = self._store.require(job_id)
        return job, self._store.tickets_for_job(job.id)

    def list_jobs(
        self,
        *,
        status: Optional[str] = None,
        event_id: Optional[int] = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobPage:
        return self._store.list_jobs(status=status, event_id=event_id, page=page, limit=limit)

    def list_event_jobs(self, event_id: int, *, status: Optional[str] = None, page: int = 1, limit: int = 20) -> JobPage:
        self.require_event(event_id)
        return self._store.get_by_event(event_id, status=status, page=page, limit=limit)

    def list_failed(self, limit: int = 20) -> List[TicketGenerationJob]:
        return self._store.list_failed(limit)

    def stats(self, event_id: Optional[int] = None) -> Dict[str, int]:
        return self._store.stats(event_id)

    def retry_job(self, job_id: int, *, actor_id: Optional[int]) -> TicketGenerationJob:
        job = self._store.require(job_id)
        if job.job_status is not JobStatus.FAILED or job.is_cancelled:
            raise StateConflictError(
                f"Job {job_id} cannot be retried from status {job.status}",
                code="JOB_NOT_IN_PENDING",
                details={"status": job.status, "cancelled": job.is_cancelled},
            )

        reset = self._store.reset_failed_tickets(job.id)
        moved = self._store.transition(job.id, JobStatus.FAILED, JobStatus.PENDING, updated_by=actor_id)
        if moved is None:
            self._session.rollback()
            raise StateConflictError(f"Job {job_id} changed state concurrently", code="JOB_NOT_IN_PENDING")

        self._system_logs.record(
            action="job.retry",
            actor_id=actor_id,
            resource_type="ticket_generation_job",
            resource_id=job_id,
            context={"attempt_count": moved.attempt_count, "tickets_reset": reset},
            correlation_id=str(moved.correlation_id),
        )
        self._session.commit()
        LOGGER.info("job_retried", extra={"job_id": job_id, "attempt_count": moved.attempt_count, "tickets_reset": reset})
        return moved

    def cancel_job(self, job_id: int, *, actor_id: Optional[int]) -> TicketGenerationJob:
        job = self._store.require(job_id)
        if job.job_status.is_terminal:
            raise StateConflictError(
                f"Job {job_id} is already {job.status}",
                code="NOT_CANCELLABLE",
                details={"status": job.status},
            )

        moved = self._store.cancel(job_id, updated_by=actor_id)
        if moved is None:
            self._session.rollback()
            raise StateConflictError(f"Job {job_id} changed state concurrently", code="NOT_CANCELLABLE")

        self._system_logs.record(
            action="job.cancel",
            actor_id=actor_id,
            resource_type="ticket_generation_job",
            resource_id=job_id,
            correlation_id=str(moved.correlation_id),
        )
        self._session.commit()
        LOGGER.info("job_cancelled", extra={"job_id": job_id, "actor_id": actor_id})
        return moved

    def require_event(self, event_id: int) -> Event:
        return self._catalog.get_event(event_id)

    def generation_status(self, event_id: int) -> Dict[str, object]:
        """Derived per-event view: job counts, latest job, and ticket artifact presence."""

        self.require_event(event_id)
        stats = self._store.stats(event_id)
        jobs = {status.value: stats[status.value] for status in JobStatus}
        jobs["total"] = stats["total"]

        latest = self._store.get_by_event(event_id, page=1, limit=1).items
        tickets = list(
            self._session.scalars(
                select(Ticket)
                .join(EventGuest, Ticket.event_guest_id == EventGuest.id)
                .where(EventGuest.event_id == event_id)
                .where(Ticket.deleted_at.is_(None))
                .order_by(Ticket.id)
            )
        )

        counts = {status.value: 0 for status in TicketStatus}
        counts["validated"] = 0
        for ticket in tickets:
            counts[ticket.status] = counts.get(ticket.status, 0) + 1
            if ticket.is_validated:
                counts["validated"] += 1
        counts["total"] = len(tickets)

        return {
            "event_id": event_id,
            "jobs": jobs,
            "latest_job": latest[0] if latest else None,
            "tickets": counts,
            "ticket_artifacts": [
                {
                    "ticket_id": ticket.id,
                    "ticket_code": ticket.ticket_code,
                    "status": ticket.status,
                    "has_qr_code": bool(ticket.qr_code_data),
                    "has_file_url": bool(ticket.ticket_file_url),
                    "has_file_path": bool(ticket.ticket_file_path),
                    "is_validated": ticket.is_validated,
                }
                for ticket in tickets
            ],
        }

"""Persistence and state machine for ticket generation jobs.

The store is the only writer of ``ticket_generation_jobs.status``. Every status
change is a compare-and-set ``UPDATE ... WHERE status = :from`` so that two
workers racing on the same job cannot both win.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from planner_core.core.errors import NotFoundError, StateConflictError, ValidationFailedError
from planner_core.models.base import utcnow
from planner_core.models.generation_job import (
    ALLOWED_TRANSITIONS,
    CANCELLED_MESSAGE,
    JobStatus,
    TicketGenerationJob,
)
from planner_core.models.ticket import Ticket, TicketStatus
from planner_core.schemas.webhook import TicketOutcome
from planner_core.services.catalog import EventCatalog

LOGGER = logging.getLogger("planner_core.services.job_store")

DEFAULT_FAILURE_MESSAGE = "generation failed"
_NON_TERMINAL = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class JobNotFoundError(NotFoundError):
    default_code = "JOB_NOT_FOUND"


class InvalidTransitionError(RuntimeError):
    """Raised when code asks for an edge the job state machine does not have."""


@dataclass
class JobPage:
    items: List[TicketGenerationJob]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def generate_ticket_code() -> str:
    return f"TKT-{uuid.uuid4().hex[:12].upper()}"


class TicketGenerationJobStore:
    """Jobs, their ticket rows, and the transitions between job states."""

    def __init__(self, session: Session, catalog: Optional[EventCatalog] = None) -> None:
        self._session = session
        self._catalog = catalog or EventCatalog(session)

    def create(
        self,
        *,
        event_id: int,
        ticket_type_id: int,
        event_guest_ids: Sequence[int],
        created_by: Optional[int],
        ticket_template_id: Optional[int] = None,
        correlation_id: Optional[uuid.UUID] = None,
    ) -> TicketGenerationJob:
        """Insert a pending job and one pending ticket per event guest."""

        guest_ids = list(event_guest_ids)
        if not guest_ids:
            raise ValidationFailedError(
                "event_guest_ids must not be empty",
                details={"field": "event_guest_ids"},
            )
        duplicates = sorted({guest_id for guest_id in guest_ids if guest_ids.count(guest_id) > 1})
        if duplicates:
            raise ValidationFailedError(
                "event_guest_ids contains duplicates",
                details={"field": "event_guest_ids", "duplicates": duplicates},
            )

        event = self._catalog.get_event(event_id)
        ticket_type = self._catalog.get_ticket_type(ticket_type_id)
        if ticket_type is None or ticket_type.event_id != event.id:
            raise ValidationFailedError(
                f"Ticket type {ticket_type_id} does not belong to event {event_id}",
                details={"field": "ticket_type_id"},
            )

        guests = self._catalog.get_event_guests(event.id, guest_ids)
        foreign = [guest_id for guest_id in guest_ids if guest_id not in guests]
        if foreign:
            raise ValidationFailedError(
                f"Guests do not belong to event {event_id}",
                details={"field": "event_guest_ids", "invalid_ids": foreign},
            )

        if correlation_id is not None:
            existing = self._session.scalar(
                select(TicketGenerationJob)
                .where(TicketGenerationJob.correlation_id == correlation_id)
                .where(TicketGenerationJob.status.in_(_NON_TERMINAL))
            )
            if existing is not None:
                raise StateConflictError(
                    f"Job {existing.id} with this correlation id is still running",
                    details={"job_id": existing.id, "status": existing.status},
                )

        job = TicketGenerationJob(
            event_id=event.id,
            created_by=created_by,
            updated_by=created_by,
            status=JobStatus.PENDING.value,
            details={
                "event_guest_ids": guest_ids,
                "ticket_type_id": ticket_type_id,
                "ticket_template_id": ticket_template_id,
            },
            tickets_total=len(guest_ids),
            tickets_processed=0,
            correlation_id=correlation_id or uuid.uuid4(),
            attempt_count=1,
        )
        self._session.add(job)
        try:
            self._session.flush()
            for guest_id in guest_ids:
                self._session.add(
                    Ticket(
                        event_guest_id=guest_id,
                        ticket_type_id=ticket_type_id,
                        ticket_template_id=ticket_template_id,
                        ticket_code=generate_ticket_code(),
                        status=TicketStatus.PENDING.value,
                        generation_job_id=job.id,
                    )
                )
            self._session.flush()
        except IntegrityError as exc:
            self._session.rollback()
            raise StateConflictError("Ticket generation job could not be stored") from exc

        LOGGER.info(
            "job_created",
            extra={
                "job_id": job.id,
                "event_id": event.id,
                "tickets_total": job.tickets_total,
                "correlation_id": str(job.correlation_id),
            },
        )
        return job

    def get_by_id(self, job_id: int) -> Optional[TicketGenerationJob]:
        return self._session.get(TicketGenerationJob, job_id)

    def require(self, job_id: int) -> TicketGenerationJob:
        job = self.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Ticket generation job {job_id} not found")
        return job

    def lock(self, job_id: int) -> Optional[TicketGenerationJob]:
        """Load the job row holding a row lock for the rest of the transaction."""

        stmt = select(TicketGenerationJob).where(TicketGenerationJob.id == job_id)
        if self._session.get_bind().dialect.name != "sqlite":
            stmt = stmt.with_for_update(nowait=False)
        return self._session.scalars(stmt.execution_options(populate_existing=True)).first()

    def transition(
        self,
        job_id: int,
        from_status: JobStatus,
        to_status: JobStatus,
        *,
        tickets_processed: Optional[int] = None,
        error_message: Optional[str] = None,
        updated_by: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[TicketGenerationJob]:
        """Compare-and-set the job status; return the updated row or None if ``from_status`` no longer holds."""

        from_status, to_status = JobStatus(from_status), JobStatus(to_status)
        if (from_status, to_status) not in ALLOWED_TRANSITIONS:
            raise InvalidTransitionError(f"{from_status.value} -> {to_status.value} is not a job transition")

        now = utcnow()
        values: Dict[str, Any] = {"status": to_status.value, "updated_at": now}
        if to_status is JobStatus.PROCESSING:
            values["started_at"] = now
        elif to_status is JobStatus.COMPLETED:
            values["completed_at"] = now
            values["tickets_processed"] = self._clamp_processed(job_id, tickets_processed or 0)
            values["error_message"] = error_message
        elif to_status is JobStatus.FAILED:
            values["completed_at"] = now
            values["error_message"] = error_message or DEFAULT_FAILURE_MESSAGE
        elif from_status is JobStatus.FAILED and to_status is JobStatus.PENDING:
            values.update(
                started_at=None,
                completed_at=None,
                error_message=None,
                tickets_processed=0,
                attempt_count=TicketGenerationJob.attempt_count + 1,
            )
        if updated_by is not None:
            values["updated_by"] = updated_by
        if details is not None:
            values["details"] = details

        result = self._session.execute(
            update(TicketGenerationJob)
            .where(TicketGenerationJob.id == job_id)
            .where(TicketGenerationJob.status == from_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            LOGGER.info(
                "job_transition_rejected",
                extra={"job_id": job_id, "from_status": from_status.value, "to_status": to_status.value},
            )
            return None

        job = self._session.get(TicketGenerationJob, job_id, populate_existing=True)
        LOGGER.info(
            "job_transitioned",
            extra={"job_id": job_id, "from_status": from_status.value, "to_status": to_status.value},
        )
        return job

    def cancel(self, job_id: int, *, updated_by: Optional[int]) -> Optional[TicketGenerationJob]:
        job = self.require(job_id)
        status = job.job_status
        if status.is_terminal:
            return None
        details = dict(job.details or {})
        details["cancelled_by"] = updated_by
        return self.transition(
            job_id,
            status,
            JobStatus.FAILED,
            error_message=CANCELLED_MESSAGE,
            updated_by=updated_by,
            details=details,
        )

    def apply_ticket_outcomes(
        self,
        job_id: int,
        outcomes: Iterable[TicketOutcome],
        *,
        late: bool = False,
        force_failed: bool = False,
    ) -> int:
        """Write per-ticket results for tickets owned by ``job_id``.

        Validated tickets are never touched. Successful outcomes carrying all
        three artifacts mark the ticket generated; anything else marks it
        failed, except that a late outcome never downgrades a generated ticket.
        With ``force_failed`` every outcome is a failure and no artifact is written.
        Returns how many of the job's tickets the outcomes governed, which is
        stable when the same outcomes are applied again.
        """

        outcomes = list(outcomes)
        ids = {outcome.numeric_ticket_id() for outcome in outcomes} - {None}
        if not ids:
            return 0
        tickets = {
            ticket.id: ticket
            for ticket in self._session.scalars(
                select(Ticket)
                .where(Ticket.id.in_(ids))
                .where(Ticket.generation_job_id == job_id)
                .where(Ticket.deleted_at.is_(None))
            )
        }

        governed = 0
        for outcome in outcomes:
            ticket = tickets.get(outcome.numeric_ticket_id())
            if ticket is None:
                LOGGER.warning(
                    "ticket_outcome_not_owned",
                    extra={"job_id": job_id, "ticket_id": outcome.ticket_id},
                )
                continue
            if ticket.is_validated:
                LOGGER.info(
                    "ticket_outcome_skipped_validated",
                    extra={"job_id": job_id, "ticket_id": ticket.id},
                )
                continue

            if outcome.success and outcome.has_artifacts and not force_failed:
                ticket.qr_code_data = outcome.qr_code_data
                ticket.ticket_file_url = outcome.file_url
                ticket.ticket_file_path = outcome.file_path
                ticket.generated_at = _parse_timestamp(outcome.generated_at) or ticket.generated_at or utcnow()
                ticket.status = TicketStatus.GENERATED.value
            else:
                if outcome.success and not force_failed:
                    LOGGER.warning(
                        "ticket_outcome_missing_artifacts",
                        extra={"job_id": job_id, "ticket_id": ticket.id},
                    )
                if late and ticket.status == TicketStatus.GENERATED.value:
                    continue
                ticket.status = TicketStatus.FAILED.value
            governed += 1

        self._session.flush()
        return governed

    def mark_job_tickets_failed(self, job_id: int) -> int:
        result = self._session.execute(
            update(Ticket)
            .where(Ticket.generation_job_id == job_id)
            .where(Ticket.status == TicketStatus.PENDING.value)
            .where(Ticket.is_validated.is_(False))
            .values(status=TicketStatus.FAILED.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def reset_failed_tickets(self, job_id: int) -> int:
        result = self._session.execute(
            update(Ticket)
            .where(Ticket.generation_job_id == job_id)
            .where(Ticket.status == TicketStatus.FAILED.value)
            .where(Ticket.is_validated.is_(False))
            .values(status=TicketStatus.PENDING.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def tickets_for_job(self, job_id: int) -> List[Ticket]:
        return list(
            self._session.scalars(
                select(Ticket).where(Ticket.generation_job_id == job_id).order_by(Ticket.id)
            )
        )

    def list_jobs(
        self,
        *,
        status: Optional[str] = None,
        event_id: Optional[int] = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobPage:
        stmt = select(TicketGenerationJob)
        count_stmt = select(func.count(TicketGenerationJob.id))
        if status:
            stmt = stmt.where(TicketGenerationJob.status == status)
            count_stmt = count_stmt.where(TicketGenerationJob.status == status)
        if event_id is not None:
            stmt = stmt.where(TicketGenerationJob.event_id == event_id)
            count_stmt = count_stmt.where(TicketGenerationJob.event_id == event_id)

        total = int(self._session.scalar(count_stmt) or 0)
        items = self._session.scalars(
            stmt.order_by(TicketGenerationJob.created_at.desc(), TicketGenerationJob.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return JobPage(items=list(items), total=total, page=page, limit=limit)

    def get_by_event(
        self,
        event_id: int,
        *,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> JobPage:
        return self.list_jobs(status=status, event_id=event_id, page=page, limit=limit)

    def list_failed(self, limit: int = 20) -> List[TicketGenerationJob]:
        return list(
            self._session.scalars(
                select(TicketGenerationJob)
                .where(TicketGenerationJob.status == JobStatus.FAILED.value)
                .order_by(TicketGenerationJob.updated_at.desc(), TicketGenerationJob.id.desc())
                .limit(limit)
            )
        )

    def stats(self, event_id: Optional[int] = None) -> Dict[str, int]:
        stmt = select(
            TicketGenerationJob.status,
            func.count(TicketGenerationJob.id),
            func.coalesce(func.sum(TicketGenerationJob.tickets_total), 0),
            func.coalesce(func.sum(TicketGenerationJob.tickets_processed), 0),
        ).group_by(TicketGenerationJob.status)
        if event_id is not None:
            stmt = stmt.where(TicketGenerationJob.event_id == event_id)

        stats: Dict[str, int] = {status.value: 0 for status in JobStatus}
        stats.update(total=0, tickets_total=0, tickets_processed=0)
        for status, count, tickets_total, tickets_processed in self._session.execute(stmt):
            stats[status] = int(count)
            stats["total"] += int(count)
            stats["tickets_total"] += int(tickets_total)
            stats["tickets_processed"] += int(tickets_processed)
        return stats

    def find_stale_pending(self, older_than: datetime, limit: int = 100) -> List[TicketGenerationJob]:
        return list(
            self._session.scalars(
                select(TicketGenerationJob)
                .where(TicketGenerationJob.status == JobStatus.PENDING.value)
                .where(TicketGenerationJob.updated_at < older_than)
                .order_by(TicketGenerationJob.id)
                .limit(limit)
            )
        )

    def _clamp_processed(self, job_id: int, tickets_processed: int) -> int:
        total = self._session.scalar(
            select(TicketGenerationJob.tickets_total).where(TicketGenerationJob.id == job_id)
        )
        value = max(tickets_processed, 0)
        return min(value, total) if total is not None else value


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None

"""Hands pending generation jobs to the ticket generator."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.orm import Session

from planner_core.core.config import AppSettings, get_settings
from planner_core.core.database import session_scope
from planner_core.core.logging import log_correlation
from planner_core.dispatch.backoff import BackoffPolicy
from planner_core.dispatch.transport import (
    GeneratorRejectedError,
    GeneratorTransport,
    GeneratorUnavailableError,
    HttpGeneratorTransport,
    NullGeneratorTransport,
    SqsGeneratorTransport,
)
from planner_core.models.base import utcnow
from planner_core.models.generation_job import JobStatus, TicketGenerationJob
from planner_core.models.ticket import Ticket, TicketStatus
from planner_core.schemas.dispatch import DispatchEnvelope, DispatchTicket
from planner_core.services.job_store import TicketGenerationJobStore

LOGGER = logging.getLogger("planner_core.dispatch.dispatcher")

SessionFactory = Callable[[], AbstractContextManager[Session]]
Sleep = Callable[[float], Awaitable[Any]]


class DispatchOutcome(str, Enum):
    DISPATCHED = "dispatched"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"


@dataclass
class DispatchResult:
    job_id: int
    outcome: DispatchOutcome
    attempts: int = 0
    error: Optional[str] = None


class GenerationDispatcher:
    """Moves a job ``pending -> processing`` and delivers its envelope.

    Transport failures are retried with backoff while the job stays
    ``processing``, since the generator may still call back. A 4xx answer or
    running out of attempts fails the job so it can be retried by an operator.
    """

    def __init__(
        self,
        *,
        transport: GeneratorTransport,
        callback_url: str,
        policy: Optional[BackoffPolicy] = None,
        max_attempts: int = 5,
        session_factory: SessionFactory = session_scope,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._callback_url = callback_url
        self._policy = policy or BackoffPolicy()
        self._max_attempts = max(1, max_attempts)
        self._session_factory = session_factory
        self._sleep = sleep

    @property
    def transport(self) -> GeneratorTransport:
        return self._transport

    async def dispatch(self, job_id: int) -> DispatchResult:
        envelope = await asyncio.to_thread(self._claim, job_id)
        if envelope is None:
            LOGGER.info("dispatch_skipped_not_pending", extra={"job_id": job_id})
            return DispatchResult(job_id=job_id, outcome=DispatchOutcome.SKIPPED)

        with log_correlation(str(envelope.correlation_id)):
            return await self._deliver(job_id, envelope)

    async def _deliver(self, job_id: int, envelope: DispatchEnvelope) -> DispatchResult:
        attempt = 0
        last_error: Optional[Exception] = None
        while attempt < self._max_attempts:
            attempt += 1
            try:
                await self._transport.send(envelope)
            except GeneratorRejectedError as exc:
                LOGGER.warning(
                    "dispatch_rejected",
                    extra={"job_id": job_id, "attempt": attempt, "status_code": exc.status_code},
                )
                await asyncio.to_thread(
                    self._fail_job,
                    job_id,
                    f"generator rejected batch: {exc}",
                    {
                        "kind": "rejected",
                        "status_code": exc.status_code,
                        "message": str(exc),
                        "body": exc.body,
                        "attempts": attempt,
                    },
                )
                return DispatchResult(job_id=job_id, outcome=DispatchOutcome.REJECTED, attempts=attempt, error=str(exc))
            except GeneratorUnavailableError as exc:
                last_error = exc
                LOGGER.warning(
                    "dispatch_attempt_failed",
                    extra={"job_id": job_id, "attempt": attempt, "max_attempts": self._max_attempts, "error": str(exc)},
                )
                if attempt < self._max_attempts:
                    await self._sleep(self._policy.delay(attempt))
                continue

            LOGGER.info("job_dispatched", extra={"job_id": job_id, "attempt": attempt})
            return DispatchResult(job_id=job_id, outcome=DispatchOutcome.DISPATCHED, attempts=attempt)

        message = f"generator unavailable after {self._max_attempts} attempts"
        await asyncio.to_thread(
            self._fail_job,
            job_id,
            message,
            {
                "kind": "unavailable",
                "message": str(last_error) if last_error else None,
                "attempts": self._max_attempts,
            },
        )
        return DispatchResult(
            job_id=job_id,
            outcome=DispatchOutcome.EXHAUSTED,
            attempts=self._max_attempts,
            error=message,
        )

    def _claim(self, job_id: int) -> Optional[DispatchEnvelope]:
        with self._session_factory() as session:
            store = TicketGenerationJobStore(session)
            job = store.transition(job_id, JobStatus.PENDING, JobStatus.PROCESSING)
            if job is None:
                return None
            return self._build_envelope(job, store.tickets_for_job(job_id))

    def _build_envelope(self, job: TicketGenerationJob, tickets: list[Ticket]) -> DispatchEnvelope:
        pending = [ticket for ticket in tickets if ticket.status == TicketStatus.PENDING.value and ticket.deleted_at is None]
        return DispatchEnvelope(
            correlation_id=job.correlation_id,
            job_id=job.id,
            event_id=job.event_id,
            attempt=job.attempt_count,
            tickets=[
                DispatchTicket(
                    ticket_id=ticket.id,
                    event_guest_id=ticket.event_guest_id,
                    ticket_type_id=ticket.ticket_type_id,
                    template_id=ticket.ticket_template_id,
                )
                for ticket in pending
            ],
            callback_url=self._callback_url,
        )

    def _fail_job(self, job_id: int, message: str, dispatch_error: Dict[str, Any]) -> None:
        with self._session_factory() as session:
            store = TicketGenerationJobStore(session)
            current = store.get_by_id(job_id)
            details = dict(current.details or {}) if current is not None else {}
            details["dispatch_error"] = {**dispatch_error, "at": utcnow().isoformat()}
            job = store.transition(
                job_id,
                JobStatus.PROCESSING,
                JobStatus.FAILED,
                error_message=message,
                details=details,
            )
            if job is None:
                LOGGER.info("dispatch_failure_not_recorded", extra={"job_id": job_id, "reason": "job_left_processing"})
                return
            LOGGER.error("job_dispatch_failed", extra={"job_id": job_id, "error_message": message})


def build_transport(settings: AppSettings) -> GeneratorTransport:
    if settings.ticket_generator_queue_url:
        region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "us-east-1"
        return SqsGeneratorTransport(queue_url=settings.ticket_generator_queue_url, region_name=region)
    if settings.ticket_generator_url:
        return HttpGeneratorTransport(
            base_url=settings.ticket_generator_url,
            api_key=settings.ticket_generator_api_key,
            service_name=settings.service_name,
            timeout=settings.http_timeout_seconds,
        )
    return NullGeneratorTransport()


_dispatcher: Optional[GenerationDispatcher] = None


def get_generation_dispatcher() -> GenerationDispatcher:
    """Return the process-wide dispatcher."""

    global _dispatcher
    if _dispatcher is not None:
        return _dispatcher

    settings = get_settings()
    _dispatcher = GenerationDispatcher(
        transport=build_transport(settings),
        callback_url=settings.ticket_webhook_url,
        policy=BackoffPolicy(
            base=settings.dispatch_backoff_base,
            factor=settings.dispatch_backoff_factor,
            cap=settings.dispatch_backoff_cap,
            jitter=settings.dispatch_backoff_jitter,
        ),
        max_attempts=settings.dispatch_max_attempts,
    )
    return _dispatcher


def set_generation_dispatcher(dispatcher: Optional[GenerationDispatcher]) -> None:
    """Override the cached dispatcher (primarily for tests)."""

    global _dispatcher
    _dispatcher = dispatcher

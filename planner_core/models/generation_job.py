"""Ticket generation job model and its state machine edges."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from planner_core.models.base import Base, TimestampMixin
from planner_core.models.types import GUID, JSONType, UTCDateTime


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Every status change a job may undergo; anything else is rejected by the store.
ALLOWED_TRANSITIONS: frozenset[tuple[JobStatus, JobStatus]] = frozenset(
    {
        (JobStatus.PENDING, JobStatus.PROCESSING),
        (JobStatus.PROCESSING, JobStatus.COMPLETED),
        (JobStatus.PROCESSING, JobStatus.FAILED),
        (JobStatus.FAILED, JobStatus.PENDING),
        (JobStatus.PENDING, JobStatus.FAILED),
    }
)

CANCELLED_MESSAGE = "cancelled by user"


class TicketGenerationJob(TimestampMixin, Base):
    __tablename__ = "ticket_generation_jobs"
    __table_args__ = (
        Index("ix_ticket_generation_jobs_event", "event_id"),
        Index("ix_ticket_generation_jobs_status", "status"),
        Index("ix_ticket_generation_jobs_correlation", "correlation_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(length=16), nullable=False, default=JobStatus.PENDING.value)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    tickets_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tickets_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, default=uuid.uuid4)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def is_cancelled(self) -> bool:
        return self.status == JobStatus.FAILED.value and self.error_message == CANCELLED_MESSAGE

"""Ticket rows and their generation artifacts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from planner_core.models.base import Base, SoftDeleteMixin, TimestampMixin
from planner_core.models.types import UTCDateTime


class TicketStatus(str, Enum):
    """Generation state of a ticket."""

    PENDING = "pending"
    GENERATED = "generated"
    FAILED = "failed"


class Ticket(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_generation_job", "generation_job_id"),
        Index("ix_tickets_event_guest", "event_guest_id"),
        Index("ix_tickets_payment_intent", "payment_intent_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_guest_id: Mapped[int] = mapped_column(ForeignKey("event_guests.id"), nullable=False)
    ticket_type_id: Mapped[int] = mapped_column(ForeignKey("ticket_types.id"), nullable=False)
    ticket_template_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ticket_code: Mapped[str] = mapped_column(String(length=64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(length=16), nullable=False, default=TicketStatus.PENDING.value)
    qr_code_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ticket_file_url: Mapped[Optional[str]] = mapped_column(String(length=1024), nullable=True)
    ticket_file_path: Mapped[Optional[str]] = mapped_column(String(length=1024), nullable=True)
    generated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    generation_job_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("ticket_generation_jobs.id"),
        nullable=True,
    )
    payment_status: Mapped[Optional[str]] = mapped_column(String(length=32), nullable=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    is_validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def has_artifacts(self) -> bool:
        return bool(self.qr_code_data and self.ticket_file_url and self.ticket_file_path)

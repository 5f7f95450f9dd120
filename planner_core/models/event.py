"""Event, guest and ticket type tables.

These rows are written by other modules of the platform; the generation core
only reads them to validate jobs and scans.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SqlEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from planner_core.models.base import Base, SoftDeleteMixin, TimestampMixin
from planner_core.models.types import UTCDateTime


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class TicketKind(str, Enum):
    PAID = "paid"
    FREE = "free"


class Event(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "events"
    __table_args__ = (Index("ix_events_organizer", "organizer_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organizer_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(length=255), nullable=False)
    status: Mapped[str] = mapped_column(String(length=32), nullable=False, default=EventStatus.DRAFT.value)
    event_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(length=255), nullable=True)
    max_attendees: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class Guest(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "guests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str] = mapped_column(String(length=120), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(length=120), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(length=255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(length=32), nullable=True)


class EventGuest(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "event_guests"
    __table_args__ = (
        UniqueConstraint("event_id", "guest_id", name="uq_event_guests_event_guest"),
        Index("ix_event_guests_event", "event_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    guest_id: Mapped[int] = mapped_column(ForeignKey("guests.id"), nullable=False)
    invitation_code: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(length=32), nullable=False, default="invited")
    is_present: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class TicketType(TimestampMixin, Base):
    __tablename__ = "ticket_types"
    __table_args__ = (Index("ix_ticket_types_event", "event_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(length=120), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(length=3), nullable=False, default="EUR")
    type: Mapped[TicketKind] = mapped_column(
        SqlEnum(TicketKind, name="ticket_kind", native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TicketKind.FREE,
    )

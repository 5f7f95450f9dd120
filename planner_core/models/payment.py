"""Payment rows mirrored from the payment service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from planner_core.models.base import Base, TimestampMixin
from planner_core.models.types import JSONType, UTCDateTime


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


PAYMENT_TRANSITIONS: frozenset[tuple[PaymentStatus, PaymentStatus]] = frozenset(
    {
        (PaymentStatus.PENDING, PaymentStatus.COMPLETED),
        (PaymentStatus.PENDING, PaymentStatus.FAILED),
        (PaymentStatus.PENDING, PaymentStatus.CANCELLED),
        (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED),
    }
)


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_user", "user_id"),
        Index("ix_payments_event", "event_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_intent_id: Mapped[str] = mapped_column(String(length=128), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    event_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    template_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(length=3), nullable=False, default="EUR")
    payment_method: Mapped[str] = mapped_column(String(length=32), nullable=False)
    gateway: Mapped[Optional[str]] = mapped_column(String(length=32), nullable=True)
    status: Mapped[str] = mapped_column(String(length=16), nullable=False, default=PaymentStatus.PENDING.value)
    ticket_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

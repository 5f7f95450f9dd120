"""Inbound webhook deliveries, used for replay detection."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SqlEnum
from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from planner_core.models.base import Base, TimestampMixin, utcnow
from planner_core.models.types import JSONType, UTCDateTime


class DeliveryOutcome(str, Enum):
    IN_PROGRESS = "in_progress"
    OK = "ok"
    APPLIED_LATE = "applied_late"
    IGNORED = "ignored"
    ERROR = "error"

    @property
    def is_final(self) -> bool:
        return self in (DeliveryOutcome.OK, DeliveryOutcome.APPLIED_LATE, DeliveryOutcome.IGNORED)


class WebhookDelivery(TimestampMixin, Base):
    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        Index("ix_webhook_deliveries_job", "job_id"),
        Index("ix_webhook_deliveries_source_outcome", "source", "outcome"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    dedup_key: Mapped[str] = mapped_column(String(length=64), unique=True, nullable=False)
    source: Mapped[str] = mapped_column(String(length=32), nullable=False, default="ticket_generator")
    job_id: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    event_type: Mapped[str] = mapped_column(String(length=64), nullable=False)
    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    signature_ok: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    normalized_payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    outcome: Mapped[DeliveryOutcome] = mapped_column(
        SqlEnum(DeliveryOutcome, name="webhook_delivery_outcome", native_enum=False,
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=DeliveryOutcome.IN_PROGRESS,
    )
    response_body: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

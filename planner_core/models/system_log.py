"""Operator-facing activity log entries."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from planner_core.models.base import Base, TimestampMixin
from planner_core.models.types import JSONType


class SystemLog(TimestampMixin, Base):
    __tablename__ = "system_logs"
    __table_args__ = (
        Index("ix_system_logs_action", "action"),
        Index("ix_system_logs_resource", "resource_type", "resource_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    level: Mapped[str] = mapped_column(String(length=16), nullable=False, default="info")
    action: Mapped[str] = mapped_column(String(length=120), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    resource_type: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    correlation_id: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    context: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

"""Payment request/response schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentCreate(BaseModel):
    amount: Decimal
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    payment_method: str
    event_id: Optional[int] = None
    template_id: Optional[int] = None
    ticket_ids: List[int] = Field(default_factory=list)


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payment_intent_id: str
    user_id: int
    event_id: Optional[int]
    template_id: Optional[int]
    amount: Decimal
    currency: str
    payment_method: str
    gateway: Optional[str]
    status: str
    ticket_ids: List[int]
    failure_reason: Optional[str]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class PaymentCreated(BaseModel):
    payment: PaymentRead
    client_secret: Optional[str] = None

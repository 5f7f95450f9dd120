"""Envelope handed to the ticket generator."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DispatchTicket(BaseModel):
    ticket_id: int
    event_guest_id: int
    ticket_type_id: int
    template_id: Optional[int] = None


class DispatchEnvelope(BaseModel):
    correlation_id: UUID
    job_id: int
    event_id: int
    attempt: int = 1
    tickets: List[DispatchTicket] = Field(default_factory=list)
    callback_url: str

"""Canonical webhook shapes shared by the normalizer and reconcilers."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

TICKET_COMPLETED = "ticket.completed"
TICKET_FAILED = "ticket.failed"
TICKET_PARTIAL = "ticket.partial"
HANDLED_TICKET_EVENTS = frozenset({TICKET_COMPLETED, TICKET_FAILED, TICKET_PARTIAL})


class TicketOutcome(BaseModel):
    ticket_id: Union[int, str]
    ticket_code: Optional[str] = None
    qr_code_data: Optional[str] = None
    file_url: Optional[str] = None
    file_path: Optional[str] = None
    generated_at: Optional[str] = None
    success: bool
    error: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)

    @property
    def has_artifacts(self) -> bool:
        return bool(self.qr_code_data and self.file_url and self.file_path)

    def numeric_ticket_id(self) -> Optional[int]:
        try:
            return int(self.ticket_id)
        except (TypeError, ValueError):
            return None


class WebhookSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    processing_time_ms: Optional[int] = None


class CanonicalWebhook(BaseModel):
    """Single normalized form of a ticket generator callback."""

    job_id: Union[int, str]
    event_type: str
    status: str
    timestamp: str
    tickets: List[TicketOutcome] = Field(default_factory=list)
    summary: WebhookSummary = Field(default_factory=WebhookSummary)
    error: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_handled(self) -> bool:
        return self.event_type in HANDLED_TICKET_EVENTS

    def numeric_job_id(self) -> Optional[int]:
        try:
            return int(self.job_id)
        except (TypeError, ValueError):
            return None


class WebhookReceipt(BaseModel):
    job_id: Union[int, str]
    event_type: str
    status: Optional[str] = None
    outcome: str
    processing_time_ms: int
    tickets_updated: int
    tickets_received: int

"""Ticket generation job API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class GenerationJobCreate(BaseModel):
    event_id: int
    ticket_type_id: int
    event_guest_ids: List[int]
    ticket_template_id: Optional[int] = None
    correlation_id: Optional[UUID] = None


class TicketResponse(BaseModel):
    id: int
    event_guest_id: int
    ticket_type_id: int
    ticket_template_id: Optional[int]
    ticket_code: str
    status: str
    qr_code_data: Optional[str]
    ticket_file_url: Optional[str]
    ticket_file_path: Optional[str]
    generated_at: Optional[datetime]
    payment_status: Optional[str]
    is_validated: bool

    model_config = ConfigDict(from_attributes=True)


class GenerationJobResponse(BaseModel):
    id: int
    event_id: int
    status: str
    created_by: Optional[int]
    updated_by: Optional[int]
    details: Dict[str, Any] = Field(default_factory=dict)
    tickets_processed: int
    tickets_total: int
    error_message: Optional[str]
    correlation_id: UUID
    attempt_count: int
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GenerationJobDetail(GenerationJobResponse):
    tickets: List[TicketResponse] = Field(default_factory=list)
    created_by_user: Optional[Dict[str, Any]] = None


class GenerationJobPage(BaseModel):
    items: List[GenerationJobResponse]
    total: int
    page: int
    limit: int
    pages: int


class TicketArtifactStatus(BaseModel):
    ticket_id: int
    ticket_code: str
    status: str
    has_qr_code: bool
    has_file_url: bool
    has_file_path: bool
    is_validated: bool


class GenerationStatus(BaseModel):
    event_id: int
    jobs: Dict[str, int]
    latest_job: Optional[GenerationJobResponse]
    tickets: Dict[str, int]
    ticket_artifacts: List[TicketArtifactStatus]

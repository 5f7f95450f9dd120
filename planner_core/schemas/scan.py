"""Scan validation schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ScanValidationRequest(BaseModel):
    ticket_id: int
    event_id: int
    scan_context: Dict[str, Any] = Field(default_factory=dict)


class ScanValidationResult(BaseModel):
    ticket_id: int
    ticket_code: str
    event_id: int
    is_validated: bool
    validated_at: Optional[datetime]
    guest: Dict[str, Any]


class ScanHistoryPage(BaseModel):
    scans: List[Dict[str, Any]]
    total: int
    page: int
    limit: int

"""Response envelopes shared by every route."""

from __future__ import annotations

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class Envelope(BaseModel, Generic[DataT]):
    success: bool = True
    data: DataT
    message: Optional[str] = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: str
    code: str
    details: Optional[Any] = None

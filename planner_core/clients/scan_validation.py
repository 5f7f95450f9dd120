"""Scan-validation service client (read-only history)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from planner_core.core.config import get_settings
from planner_core.core.errors import CollaboratorUnavailableError

logger = logging.getLogger("planner_core.clients.scan_validation")


class ScanServiceUnavailableError(CollaboratorUnavailableError):
    default_code = "SCAN_SERVICE_UNAVAILABLE"


class ScanValidationClient(Protocol):
    async def get_scan_history(self, event_id: int, *, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        ...


class MockScanValidationClient(ScanValidationClient):
    def __init__(self, scans: Optional[Dict[int, List[Dict[str, Any]]]] = None) -> None:
        self.scans = scans or {}

    async def get_scan_history(self, event_id: int, *, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        rows = self.scans.get(event_id, [])
        start = (page - 1) * limit
        return {"scans": rows[start:start + limit], "total": len(rows), "page": page, "limit": limit}


class HttpScanValidationClient(ScanValidationClient):
    def __init__(self, *, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def get_scan_history(self, event_id: int, *, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        url = f"{self._base_url}/api/scan/event/{event_id}/history"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, params={"page": page, "limit": limit})
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "scan_history_http_error",
                extra={"event_id": event_id, "status_code": exc.response.status_code},
            )
            raise ScanServiceUnavailableError(
                f"Scan service returned {exc.response.status_code}",
                status_code=502,
            ) from exc
        except httpx.RequestError as exc:
            logger.error("scan_history_request_error", extra={"event_id": event_id, "error": str(exc)})
            raise ScanServiceUnavailableError("Scan service unreachable") from exc

        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        scans = data.get("scans", data.get("history", [])) if isinstance(data, dict) else list(data)
        total = data.get("total", len(scans)) if isinstance(data, dict) else len(scans)
        return {"scans": scans, "total": int(total), "page": page, "limit": limit}


_scan_client: Optional[ScanValidationClient] = None


def get_scan_validation_client() -> ScanValidationClient:
    global _scan_client
    if _scan_client is None:
        settings = get_settings()
        if settings.scan_validation_service_url:
            _scan_client = HttpScanValidationClient(
                base_url=settings.scan_validation_service_url,
                timeout=settings.http_timeout_seconds,
            )
        else:
            logger.warning("scan_validation_service_not_configured")
            _scan_client = MockScanValidationClient()
    return _scan_client


def set_scan_validation_client(client: Optional[ScanValidationClient]) -> None:
    global _scan_client
    _scan_client = client

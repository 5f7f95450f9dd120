"""Normalize ticket generator callbacks into a single canonical shape.

Two payload layouts are in circulation:

* legacy: ``{job_id, status, timestamp, tickets[], summary, processing_time_ms}``
* current: ``{eventType, jobId, status, timestamp, data: {tickets[], summary, processingTime, error?}}``

Both, and the canonical form itself, map to :class:`CanonicalWebhook`. Keys the
normalizer does not understand are carried in ``extensions`` and never affect
reconciliation. Nothing downstream of this module looks at the original layout.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from planner_core.core.errors import ValidationFailedError
from planner_core.schemas.webhook import (
    TICKET_COMPLETED,
    TICKET_FAILED,
    TICKET_PARTIAL,
    CanonicalWebhook,
    TicketOutcome,
    WebhookSummary,
)


class PayloadValidationError(ValidationFailedError):
    """The callback body is missing fields the reconciler cannot do without."""

    default_code = "MISSING_REQUIRED_FIELDS"


_LEGACY_KEYS = frozenset(
    {
        "job_id",
        "event_type",
        "status",
        "timestamp",
        "tickets",
        "summary",
        "processing_time_ms",
        "error",
        "error_message",
        "extensions",
    }
)
_CURRENT_KEYS = frozenset({"eventType", "jobId", "job_id", "status", "timestamp", "data", "extensions"})
_CURRENT_DATA_KEYS = frozenset({"tickets", "summary", "processingTime", "processing_time_ms", "error"})

_TICKET_FIELDS = ("ticket_id", "ticket_code", "qr_code_data", "file_url", "file_path", "generated_at", "error")
_TICKET_ALIASES: Dict[str, str] = {
    "ticketId": "ticket_id",
    "ticketCode": "ticket_code",
    "qrCodeData": "qr_code_data",
    "fileUrl": "file_url",
    "ticket_file_url": "file_url",
    "pdf_url": "file_url",
    "filePath": "file_path",
    "ticket_file_path": "file_path",
    "pdf_file": "file_path",
    "generatedAt": "generated_at",
}
_PARTIAL_STATUSES = frozenset({"partial", "partial_completed", "partially_completed"})


def normalize_payload(body: Any) -> CanonicalWebhook:
    """Map a decoded callback body onto :class:`CanonicalWebhook`."""

    if not isinstance(body, Mapping):
        raise PayloadValidationError("Webhook body must be a JSON object")

    if _is_current_shape(body):
        fields = _from_current(body)
    else:
        fields = _from_legacy(body)

    missing = [name for name in ("job_id", "status", "timestamp") if fields.get(name) in (None, "")]
    if missing:
        raise PayloadValidationError(
            f"{', '.join(missing)} required",
            details={"missing": missing},
        )

    status = str(fields["status"])
    tickets = [_normalize_ticket(raw, status, index) for index, raw in enumerate(fields["tickets"])]
    summary = _normalize_summary(fields["summary"], tickets, fields["processing_time_ms"])
    event_type = fields["event_type"] or _derive_event_type(status, summary)

    try:
        return CanonicalWebhook(
            job_id=fields["job_id"],
            event_type=str(event_type),
            status=status,
            timestamp=str(fields["timestamp"]),
            tickets=tickets,
            summary=summary,
            error=fields["error"],
            extensions=fields["extensions"],
        )
    except ValidationError as exc:
        raise PayloadValidationError("Webhook body is malformed", details=exc.errors(include_url=False)) from exc


def canonical_json(payload: CanonicalWebhook) -> str:
    return json.dumps(payload.model_dump(mode="json"), sort_keys=True, separators=(",", ":"), default=str)


def dedup_key(payload: CanonicalWebhook) -> str:
    material = f"{payload.job_id}|{payload.event_type}|{canonical_json(payload)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def _is_current_shape(body: Mapping[str, Any]) -> bool:
    return "eventType" in body or "jobId" in body or isinstance(body.get("data"), Mapping)


def _from_legacy(body: Mapping[str, Any]) -> Dict[str, Any]:
    summary = body.get("summary") or {}
    processing_time = body.get("processing_time_ms")
    if processing_time is None and isinstance(summary, Mapping):
        processing_time = summary.get("processing_time_ms")
    return {
        "job_id": body.get("job_id"),
        "event_type": body.get("event_type"),
        "status": body.get("status"),
        "timestamp": body.get("timestamp"),
        "tickets": _as_list(body.get("tickets")),
        "summary": summary,
        "processing_time_ms": processing_time,
        "error": body.get("error") or body.get("error_message"),
        "extensions": _collect_extensions(body, _LEGACY_KEYS),
    }


def _from_current(body: Mapping[str, Any]) -> Dict[str, Any]:
    data = body.get("data") or {}
    if not isinstance(data, Mapping):
        raise PayloadValidationError("data must be an object")
    summary = data.get("summary") or {}
    processing_time = data.get("processingTime", data.get("processing_time_ms"))
    if processing_time is None and isinstance(summary, Mapping):
        processing_time = summary.get("processing_time_ms")

    extensions = _collect_extensions(body, _CURRENT_KEYS)
    for key, value in data.items():
        if key not in _CURRENT_DATA_KEYS:
            extensions[f"data.{key}"] = value

    return {
        "job_id": body.get("jobId", body.get("job_id")),
        "event_type": body.get("eventType"),
        "status": body.get("status"),
        "timestamp": body.get("timestamp"),
        "tickets": _as_list(data.get("tickets")),
        "summary": summary,
        "processing_time_ms": processing_time,
        "error": data.get("error"),
        "extensions": extensions,
    }


def _normalize_ticket(raw: Any, status: str, index: int) -> TicketOutcome:
    if not isinstance(raw, Mapping):
        raise PayloadValidationError(f"tickets[{index}] must be an object")

    values: Dict[str, Any] = {}
    for alias, name in _TICKET_ALIASES.items():
        if raw.get(alias) is not None:
            values[name] = raw[alias]
    for name in _TICKET_FIELDS:
        if raw.get(name) is not None:
            values[name] = raw[name]

    if values.get("ticket_id") in (None, ""):
        raise PayloadValidationError(
            f"tickets[{index}].ticket_id required",
            details={"missing": [f"tickets[{index}].ticket_id"]},
        )

    known = set(_TICKET_FIELDS) | set(_TICKET_ALIASES) | {"success", "extensions"}
    success = raw["success"] if raw.get("success") is not None else status == "completed"
    try:
        return TicketOutcome(
            **{key: _stringify(key, value) for key, value in values.items()},
            success=success,
            extensions=_collect_extensions(raw, known),
        )
    except ValidationError as exc:
        raise PayloadValidationError(
            f"tickets[{index}] is malformed",
            details=exc.errors(include_url=False),
        ) from exc


def _normalize_summary(
    raw: Any,
    tickets: List[TicketOutcome],
    processing_time_ms: Optional[Any],
) -> WebhookSummary:
    raw = raw if isinstance(raw, Mapping) else {}
    successful = sum(1 for ticket in tickets if ticket.success)
    try:
        return WebhookSummary(
            total=int(raw.get("total", len(tickets))),
            successful=int(raw.get("successful", successful)),
            failed=int(raw.get("failed", len(tickets) - successful)),
            processing_time_ms=int(processing_time_ms) if processing_time_ms is not None else None,
        )
    except (TypeError, ValueError) as exc:
        raise PayloadValidationError("summary counters must be integers") from exc


def _derive_event_type(status: str, summary: WebhookSummary) -> str:
    normalized = status.lower()
    if normalized == "completed":
        if summary.failed > 0 and summary.successful > 0:
            return TICKET_PARTIAL
        return TICKET_COMPLETED
    if normalized == "failed":
        return TICKET_FAILED
    if normalized in _PARTIAL_STATUSES:
        return TICKET_PARTIAL
    return f"ticket.{normalized}"


def _collect_extensions(source: Mapping[str, Any], known: Iterable[str]) -> Dict[str, Any]:
    known_keys = set(known)
    extensions: Dict[str, Any] = {}
    existing = source.get("extensions")
    if isinstance(existing, Mapping):
        extensions.update(existing)
    for key, value in source.items():
        if key not in known_keys:
            extensions[key] = value
    return extensions


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise PayloadValidationError("tickets must be an array")
    return value


def _stringify(key: str, value: Any) -> Any:
    if key == "ticket_id" or isinstance(value, str):
        return value
    return str(value)

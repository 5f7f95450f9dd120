"""Local checks run before a scanned ticket is marked validated."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from planner_core.core.errors import NotFoundError, StateConflictError, ValidationFailedError
from planner_core.models.base import utcnow
from planner_core.models.event import EventStatus
from planner_core.models.ticket import Ticket
from planner_core.services.catalog import EventCatalog, TicketContext
from planner_core.services.system_logs import SystemLogService

LOGGER = logging.getLogger("planner_core.services.scans")


class TicketNotFoundError(NotFoundError):
    default_code = "TICKET_NOT_FOUND"


class TicketAlreadyValidatedError(StateConflictError):
    default_code = "TICKET_ALREADY_VALIDATED"


class ScanValidationService:
    def __init__(self, session: Session, *, clock=utcnow) -> None:
        self._session = session
        self._catalog = EventCatalog(session)
        self._clock = clock

    def validate(self, ticket_id: int, event_id: int, scan_context: Optional[Dict[str, Any]] = None) -> TicketContext:
        context = self._catalog.ticket_context(ticket_id, event_id)
        if context is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found for event {event_id}")
        ticket, event = context.ticket, context.event
        if ticket.is_validated:
            raise TicketAlreadyValidatedError(
                f"Ticket {ticket_id} already validated",
                details={"validated_at": ticket.validated_at.isoformat() if ticket.validated_at else None},
            )

        if event.status != EventStatus.ACTIVE.value:
            raise ValidationFailedError("Event is not active", code="EVENT_NOT_ACTIVE", details={"status": event.status})

        now = self._clock()
        if event_has_ended(event.event_date, now):
            raise ValidationFailedError("Event has ended", code="EVENT_ENDED")

        if event.max_attendees:
            validated = self._catalog.count_validated_tickets(event.id)
            if validated >= event.max_attendees:
                raise ValidationFailedError(
                    "Event is at capacity",
                    code="EVENT_FULL",
                    details={"validated": validated, "max_attendees": event.max_attendees},
                )

        self._check_qr_code(ticket)

        result = self._session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id)
            .where(Ticket.is_validated.is_(False))
            .values(is_validated=True, validated_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TicketAlreadyValidatedError(f"Ticket {ticket_id} already validated")
        self._session.refresh(ticket)

        scan_context = scan_context or {}
        SystemLogService(self._session).record(
            action="ticket.validate",
            actor_id=_as_int(scan_context.get("operator_id", scan_context.get("operatorId"))),
            resource_type="ticket",
            resource_id=ticket.id,
            context={"event_id": event.id, "scan_context": scan_context},
        )
        LOGGER.info("ticket_validated", extra={"ticket_id": ticket.id, "event_id": event.id})
        return context

    @staticmethod
    def _check_qr_code(ticket: Ticket) -> None:
        raw = (ticket.qr_code_data or "").strip()
        if not raw.startswith("{"):
            return
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ValidationFailedError("QR code data is corrupted", code="CORRUPTED_QR_CODE") from exc
        if not isinstance(data, dict) or not data.get("id") or not (data.get("eventId") or data.get("event_id")):
            raise ValidationFailedError("QR code data has an invalid format", code="INVALID_QR_FORMAT")
        if str(data["id"]) != str(ticket.id):
            raise ValidationFailedError("QR code does not match the ticket", code="QR_TICKET_MISMATCH")


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def event_has_ended(event_date: Optional[datetime], now: datetime) -> bool:
    if event_date is None:
        return False
    if event_date.tzinfo is None:
        event_date = event_date.replace(tzinfo=timezone.utc)
    return event_date < now

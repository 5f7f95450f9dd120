"""Read-only lookups over events, guests and ticket types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from planner_core.core.errors import NotFoundError
from planner_core.models.event import Event, EventGuest, Guest, TicketType
from planner_core.models.ticket import Ticket


class EventNotFoundError(NotFoundError):
    default_code = "EVENT_NOT_FOUND"


@dataclass
class TicketContext:
    """A ticket joined to the guest and event it admits."""

    ticket: Ticket
    event_guest: EventGuest
    guest: Guest
    event: Event


class EventCatalog:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_event(self, event_id: int) -> Event:
        event = self._session.scalar(
            select(Event).where(Event.id == event_id).where(Event.deleted_at.is_(None))
        )
        if event is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        return event

    def get_ticket_type(self, ticket_type_id: int) -> Optional[TicketType]:
        return self._session.get(TicketType, ticket_type_id)

    def get_event_guests(self, event_id: int, event_guest_ids: Iterable[int]) -> Dict[int, EventGuest]:
        """Return the live event_guest rows of ``event_id`` among ``event_guest_ids``, keyed by id."""

        ids = list(event_guest_ids)
        if not ids:
            return {}
        rows = self._session.scalars(
            select(EventGuest)
            .where(EventGuest.id.in_(ids))
            .where(EventGuest.event_id == event_id)
            .where(EventGuest.deleted_at.is_(None))
        )
        return {row.id: row for row in rows}

    def ticket_context(self, ticket_id: int, event_id: int) -> Optional[TicketContext]:
        row = self._session.execute(
            select(Ticket, EventGuest, Guest, Event)
            .join(EventGuest, Ticket.event_guest_id == EventGuest.id)
            .join(Guest, EventGuest.guest_id == Guest.id)
            .join(Event, EventGuest.event_id == Event.id)
            .where(Ticket.id == ticket_id)
            .where(EventGuest.event_id == event_id)
            .where(Ticket.deleted_at.is_(None))
        ).first()
        if row is None:
            return None
        ticket, event_guest, guest, event = row
        return TicketContext(ticket=ticket, event_guest=event_guest, guest=guest, event=event)

    def count_validated_tickets(self, event_id: int) -> int:
        return int(
            self._session.scalar(
                select(func.count(Ticket.id))
                .join(EventGuest, Ticket.event_guest_id == EventGuest.id)
                .where(EventGuest.event_id == event_id)
                .where(Ticket.is_validated.is_(True))
            )
            or 0
        )

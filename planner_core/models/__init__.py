"""SQLAlchemy ORM models for the planner core."""

from planner_core.models.base import Base  # noqa: F401
from planner_core.models.event import Event, EventGuest, Guest, TicketType  # noqa: F401
from planner_core.models.generation_job import JobStatus, TicketGenerationJob  # noqa: F401
from planner_core.models.payment import Payment, PaymentStatus  # noqa: F401
from planner_core.models.system_log import SystemLog  # noqa: F401
from planner_core.models.ticket import Ticket, TicketStatus  # noqa: F401
from planner_core.models.webhook_delivery import DeliveryOutcome, WebhookDelivery  # noqa: F401

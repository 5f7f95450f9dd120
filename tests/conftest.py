import os
import sys
import warnings
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-payment-secret")
os.environ.setdefault("INTERNAL_SERVICE_TOKEN", "test-internal-token")
os.environ.setdefault("LOG_JSON", "false")
for _unset in (
    "TICKET_GENERATOR_URL",
    "TICKET_GENERATOR_QUEUE_URL",
    "AUTH_SERVICE_URL",
    "PAYMENT_SERVICE_URL",
    "NOTIFICATION_SERVICE_URL",
    "SCAN_VALIDATION_SERVICE_URL",
    "REDIS_URL",
    "REDIS_TOKEN",
):
    os.environ[_unset] = ""

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from planner_core.core.config import get_settings

get_settings.cache_clear()

from planner_core.clients.auth import AuthUser, MockAuthClient, set_auth_client  # noqa: E402
from planner_core.clients.notifications import LoggingNotificationClient, set_notification_client  # noqa: E402
from planner_core.clients.payments import MockPaymentClient, set_payment_client  # noqa: E402
from planner_core.clients.scan_validation import MockScanValidationClient, set_scan_validation_client  # noqa: E402
from planner_core.core.database import engine, session_scope  # noqa: E402
from planner_core.dispatch import BackoffPolicy, GenerationDispatcher, set_generation_dispatcher  # noqa: E402
from planner_core.main import create_app  # noqa: E402
from planner_core.models import Base, Event, EventGuest, Guest, TicketType  # noqa: E402
from planner_core.models.base import utcnow  # noqa: E402
from planner_core.services.cache import InMemoryPermissionCache, set_permission_cache  # noqa: E402
from planner_core.services.job_store import TicketGenerationJobStore  # noqa: E402
from planner_core.webhooks.signature import compute_signature  # noqa: E402

EVENT_ID = 42
OTHER_EVENT_ID = 43
TICKET_TYPE_ID = 7
OTHER_TICKET_TYPE_ID = 8
EVENT_GUEST_IDS = (100, 101, 102)
OTHER_EVENT_GUEST_ID = 200

ORGANIZER_ID = 10
VIEWER_ID = 20

CALLBACK_URL = "http://testserver/api/internal/ticket-generation-webhook"


class RecordingTransport:
    """Generator transport that records envelopes; queued errors are raised first."""

    def __init__(self) -> None:
        self.envelopes = []
        self.errors = []

    async def send(self, envelope) -> None:
        if self.errors:
            raise self.errors.pop(0)
        self.envelopes.append(envelope)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    set_permission_cache(InMemoryPermissionCache())
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(autouse=True)
def dispatcher(transport, sleeper):
    instance = GenerationDispatcher(
        transport=transport,
        callback_url=CALLBACK_URL,
        policy=BackoffPolicy(base=1.0, factor=2.0, cap=60.0, jitter=0.0),
        max_attempts=3,
        sleep=sleeper,
    )
    set_generation_dispatcher(instance)
    yield instance
    set_generation_dispatcher(None)


@pytest.fixture(autouse=True)
def auth_client():
    client = MockAuthClient(expired_tokens={"expired-token"})
    client.add_user("admin-token", AuthUser(id=1, email="admin@example.com", roles=["admin"]))
    client.add_user(
        "organizer-token",
        AuthUser(id=ORGANIZER_ID, email="organizer@example.com", roles=["organizer"], first_name="Olga"),
        permissions=[
            "tickets.create",
            "tickets.read",
            "tickets.update",
            "tickets.process",
            "payments.create",
            "payments.read",
        ],
    )
    client.add_user(
        "viewer-token",
        AuthUser(id=VIEWER_ID, email="viewer@example.com", roles=["viewer"]),
        permissions=["tickets.read", "payments.read"],
    )
    set_auth_client(client)
    yield client
    set_auth_client(None)


@pytest.fixture(autouse=True)
def notifier():
    client = LoggingNotificationClient()
    set_notification_client(client)
    yield client
    set_notification_client(None)


@pytest.fixture(autouse=True)
def collaborators():
    set_payment_client(MockPaymentClient())
    set_scan_validation_client(MockScanValidationClient())
    yield
    set_payment_client(None)
    set_scan_validation_client(None)


@pytest.fixture()
def client() -> TestClient:  # noqa: ANN001
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def organizer_headers() -> dict:
    return {"Authorization": "Bearer organizer-token"}


@pytest.fixture()
def viewer_headers() -> dict:
    return {"Authorization": "Bearer viewer-token"}


@pytest.fixture()
def internal_headers() -> dict:
    return {"X-Internal-Token": "test-internal-token"}


@pytest.fixture()
def seeded():
    """Event 42 with ticket type 7 and event guests 100-102; event 43 as a foreign event."""

    with session_scope() as session:
        session.add_all(
            [
                Event(
                    id=EVENT_ID,
                    organizer_id=ORGANIZER_ID,
                    title="Launch party",
                    status="active",
                    event_date=utcnow() + timedelta(days=7),
                    max_attendees=100,
                ),
                Event(
                    id=OTHER_EVENT_ID,
                    organizer_id=ORGANIZER_ID,
                    title="Other event",
                    status="active",
                    event_date=utcnow() + timedelta(days=14),
                ),
            ]
        )
        session.flush()
        session.add_all(
            [
                TicketType(id=TICKET_TYPE_ID, event_id=EVENT_ID, name="Standard", quantity=100),
                TicketType(id=OTHER_TICKET_TYPE_ID, event_id=OTHER_EVENT_ID, name="Standard", quantity=10),
            ]
        )
        for index, event_guest_id in enumerate(EVENT_GUEST_IDS, start=1):
            session.add(Guest(id=index, first_name=f"Guest{index}", email=f"guest{index}@example.com"))
            session.flush()
            session.add(EventGuest(id=event_guest_id, event_id=EVENT_ID, guest_id=index))
        session.add(Guest(id=99, first_name="Stranger"))
        session.flush()
        session.add(EventGuest(id=OTHER_EVENT_GUEST_ID, event_id=OTHER_EVENT_ID, guest_id=99))
    return {
        "event_id": EVENT_ID,
        "ticket_type_id": TICKET_TYPE_ID,
        "event_guest_ids": list(EVENT_GUEST_IDS),
    }


@pytest.fixture()
def make_job(seeded):
    """Create a pending job directly through the store; returns ``(job_id, [ticket_id, ...])``."""

    def factory(event_guest_ids=(100, 101), created_by=ORGANIZER_ID):
        with session_scope() as session:
            store = TicketGenerationJobStore(session)
            job = store.create(
                event_id=EVENT_ID,
                ticket_type_id=TICKET_TYPE_ID,
                event_guest_ids=list(event_guest_ids),
                created_by=created_by,
            )
            return job.id, [ticket.id for ticket in store.tickets_for_job(job.id)]

    return factory


@pytest.fixture()
def sign():
    def signer(body: bytes, secret: str = "test-webhook-secret") -> str:
        return compute_signature(secret, body)

    return signer


warnings.filterwarnings("ignore", category=PendingDeprecationWarning, module="starlette.formparsers")

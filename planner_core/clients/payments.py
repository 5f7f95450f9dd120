"""Payment service client."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from planner_core.core.config import get_settings
from planner_core.core.errors import CollaboratorUnavailableError

logger = logging.getLogger("planner_core.clients.payments")


class PaymentTimeoutError(CollaboratorUnavailableError):
    status_code = 504
    default_code = "PAYMENT_TIMEOUT"


class PaymentServiceUnavailableError(CollaboratorUnavailableError):
    default_code = "PAYMENT_SERVICE_UNAVAILABLE"


class PaymentRejectedError(CollaboratorUnavailableError):
    status_code = 502
    default_code = "PAYMENT_REJECTED"


@dataclass
class PaymentIntent:
    payment_intent_id: str
    status: str
    gateway: Optional[str] = None
    client_secret: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentClient(Protocol):
    async def process_payment(
        self,
        *,
        user_id: int,
        amount: Decimal,
        currency: str,
        payment_method: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentIntent:
        ...


class MockPaymentClient(PaymentClient):
    """Returns a pending intent with a fake id. No money moves."""

    def __init__(self) -> None:
        self._gateway = "mock"

    async def process_payment(
        self,
        *,
        user_id: int,
        amount: Decimal,
        currency: str,
        payment_method: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentIntent:
        intent_id = f"pi_mock_{uuid.uuid4().hex[:16]}"
        logger.info(
            "payment_process_mock",
            extra={
                "user_id": user_id,
                "amount": str(amount),
                "currency": currency,
                "payment_method": payment_method,
                "payment_intent_id": intent_id,
            },
        )
        return PaymentIntent(
            payment_intent_id=intent_id,
            status="pending",
            gateway=self._gateway,
            client_secret=f"{intent_id}_secret",
            raw={"metadata": metadata or {}, "mocked": True},
        )


class HttpPaymentClient(PaymentClient):
    """Creates payment intents through the payment service."""

    def __init__(self, *, base_url: str, timeout: float = 10.0, service_name: str = "event-planner-core") -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._service_name = service_name

    async def process_payment(
        self,
        *,
        user_id: int,
        amount: Decimal,
        currency: str,
        payment_method: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentIntent:
        url = f"{self._base_url}/api/payments/intent"
        body = {
            "user_id": user_id,
            "amount": str(amount),
            "currency": currency,
            "payment_method": payment_method,
            "metadata": metadata or {},
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=body, headers={"X-Service-Name": self._service_name})
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as exc:
            logger.error("payment_service_timeout", extra={"user_id": user_id})
            raise PaymentTimeoutError("Payment service timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.error(
                "payment_service_http_error",
                extra={"user_id": user_id, "status_code": exc.response.status_code},
            )
            if exc.response.status_code >= 500:
                raise PaymentServiceUnavailableError("Payment service unavailable") from exc
            raise PaymentRejectedError(
                f"Payment service rejected the request: {exc.response.status_code}",
                details={"status_code": exc.response.status_code},
            ) from exc
        except httpx.RequestError as exc:
            logger.error("payment_service_request_error", extra={"user_id": user_id, "error": str(exc)})
            raise PaymentServiceUnavailableError("Payment service unavailable") from exc

        data = payload.get("data", payload) if isinstance(payload, Mapping) else {}
        intent_id = data.get("payment_intent_id") or data.get("paymentIntentId") or data.get("id")
        if not intent_id:
            raise PaymentRejectedError("Payment service returned no payment intent id")

        logger.info("payment_intent_created", extra={"user_id": user_id, "payment_intent_id": intent_id})
        return PaymentIntent(
            payment_intent_id=str(intent_id),
            status=str(data.get("status", "pending")),
            gateway=data.get("gateway") or data.get("provider"),
            client_secret=data.get("client_secret") or data.get("clientSecret"),
            raw=dict(data),
        )


_payment_client: Optional[PaymentClient] = None


def get_payment_client() -> PaymentClient:
    """Get or create the payment client singleton."""

    global _payment_client
    if _payment_client is None:
        settings = get_settings()
        if settings.payment_service_url:
            _payment_client = HttpPaymentClient(
                base_url=settings.payment_service_url,
                timeout=settings.http_timeout_seconds,
                service_name=settings.service_name,
            )
        else:
            logger.warning("payment_service_not_configured")
            _payment_client = MockPaymentClient()
    return _payment_client


def set_payment_client(client: Optional[PaymentClient]) -> None:
    global _payment_client
    _payment_client = client

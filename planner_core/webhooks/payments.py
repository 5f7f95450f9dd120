"""Payment service callbacks: status changes of payment intents."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from planner_core.core.errors import ServiceError, WebhookSignatureError
from planner_core.core.logging import request_id_var
from planner_core.models.base import utcnow
from planner_core.models.payment import PAYMENT_TRANSITIONS, Payment, PaymentStatus
from planner_core.models.ticket import Ticket
from planner_core.models.webhook_delivery import DeliveryOutcome
from planner_core.services.payments import PaymentNotFoundError
from planner_core.webhooks.deliveries import DeliveryLedger
from planner_core.webhooks.normalizer import PayloadValidationError
from planner_core.webhooks.reconciler import header_value
from planner_core.webhooks.signature import SIGNATURE_HEADER, require_valid_signature

LOGGER = logging.getLogger("planner_core.webhooks.payments")

PAYMENT_SOURCE = "payment"

PAYMENT_EVENTS: Dict[str, PaymentStatus] = {
    "payment.completed": PaymentStatus.COMPLETED,
    "payment.failed": PaymentStatus.FAILED,
    "payment.canceled": PaymentStatus.CANCELLED,
    "payment.cancelled": PaymentStatus.CANCELLED,
    "payment.refunded": PaymentStatus.REFUNDED,
}

TICKET_PAYMENT_STATUS: Dict[PaymentStatus, str] = {
    PaymentStatus.COMPLETED: "paid",
    PaymentStatus.FAILED: "failed",
    PaymentStatus.CANCELLED: "cancelled",
    PaymentStatus.REFUNDED: "refunded",
}


@dataclass
class PaymentEvent:
    event_type: str
    payment_intent_id: str
    status: str
    timestamp: Optional[str]
    data: Dict[str, Any]

    @classmethod
    def from_body(cls, body: Any) -> "PaymentEvent":
        if not isinstance(body, Mapping):
            raise PayloadValidationError("Webhook body must be a JSON object")
        data = body.get("data") or {}
        if not isinstance(data, Mapping):
            raise PayloadValidationError("data must be an object")
        fields = {
            "event_type": body.get("eventType", body.get("event_type")),
            "payment_intent_id": body.get("paymentIntentId", body.get("payment_intent_id")),
            "status": body.get("status"),
        }
        missing = [name for name, value in fields.items() if value in (None, "")]
        if missing:
            raise PayloadValidationError(f"{', '.join(missing)} required", details={"missing": missing})
        return cls(
            event_type=str(fields["event_type"]),
            payment_intent_id=str(fields["payment_intent_id"]),
            status=str(fields["status"]),
            timestamp=body.get("timestamp"),
            data=dict(data),
        )

    def canonical(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "payment_intent_id": self.payment_intent_id,
            "status": self.status,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def dedup_key(self) -> str:
        encoded = json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"), default=str)
        material = f"{PAYMENT_SOURCE}|{self.payment_intent_id}|{self.event_type}|{encoded}"
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def ticket_ids(self) -> List[int]:
        ids = self.data.get("ticket_ids") or []
        if not isinstance(ids, list):
            raise PayloadValidationError("data.ticket_ids must be an array")
        try:
            return [int(ticket_id) for ticket_id in ids]
        except (TypeError, ValueError) as exc:
            raise PayloadValidationError("data.ticket_ids must contain integers") from exc


class PaymentWebhookReconciler:
    def __init__(self, session: Session, secret: Optional[str]) -> None:
        self._session = session
        self._secret = secret
        self._ledger = DeliveryLedger(session, PAYMENT_SOURCE)

    def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            require_valid_signature(raw_body, header_value(headers, SIGNATURE_HEADER), self._secret)
        except WebhookSignatureError as exc:
            LOGGER.warning("payment_webhook_rejected", extra={"code": exc.code})
            raise

        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise PayloadValidationError("Webhook body is not valid JSON") from exc
        event = PaymentEvent.from_body(body)
        ticket_ids = event.ticket_ids()

        delivery, replay = self._ledger.claim(
            event.dedup_key(),
            subject_id=event.payment_intent_id,
            event_type=event.event_type,
            payload=event.canonical(),
            request_id=header_value(headers, "x-request-id") or request_id_var.get(),
        )
        if replay:
            return dict(delivery.response_body or {})

        delivery_id = delivery.id
        try:
            outcome, receipt = self._apply(event, ticket_ids)
            receipt["processing_time_ms"] = int((time.perf_counter() - started) * 1000)
            self._session.commit()
        except Exception as exc:
            self._session.rollback()
            self._ledger.fail(delivery_id, exc, int((time.perf_counter() - started) * 1000))
            if isinstance(exc, ServiceError):
                raise
            LOGGER.exception("payment_webhook_failed", extra={"payment_intent_id": event.payment_intent_id})
            raise ServiceError("Webhook processing failed", code="INTERNAL_ERROR", status_code=500) from exc

        self._ledger.complete(delivery_id, outcome, receipt, receipt["processing_time_ms"])
        return receipt

    def _apply(self, event: PaymentEvent, ticket_ids: List[int]) -> tuple[DeliveryOutcome, Dict[str, Any]]:
        payment = self._session.scalar(
            select(Payment).where(Payment.payment_intent_id == event.payment_intent_id)
        )
        if payment is None:
            raise PaymentNotFoundError(f"Payment {event.payment_intent_id} not found")

        receipt: Dict[str, Any] = {
            "payment_intent_id": event.payment_intent_id,
            "event_type": event.event_type,
            "previous_status": payment.status,
            "status": payment.status,
            "tickets_updated": 0,
        }

        target = PAYMENT_EVENTS.get(event.event_type)
        if target is None:
            LOGGER.info("payment_webhook_ignored", extra={"event_type": event.event_type, "reason": "unknown_event"})
            receipt["outcome"] = DeliveryOutcome.IGNORED.value
            return DeliveryOutcome.IGNORED, receipt

        current = PaymentStatus(payment.status)
        if (current, target) not in PAYMENT_TRANSITIONS:
            LOGGER.info(
                "payment_webhook_ignored",
                extra={
                    "payment_intent_id": event.payment_intent_id,
                    "from_status": current.value,
                    "to_status": target.value,
                    "reason": "illegal_transition",
                },
            )
            receipt["outcome"] = DeliveryOutcome.IGNORED.value
            return DeliveryOutcome.IGNORED, receipt

        payment.status = target.value
        if event.data.get("gateway"):
            payment.gateway = str(event.data["gateway"])
        if target is PaymentStatus.COMPLETED:
            payment.completed_at = utcnow()
        if target is PaymentStatus.FAILED:
            payment.failure_reason = event.data.get("failure_reason") or event.data.get("error")

        targets = ticket_ids or list(payment.ticket_ids or [])
        tickets_updated = 0
        if targets:
            result = self._session.execute(
                update(Ticket)
                .where(Ticket.id.in_(targets))
                .where(Ticket.deleted_at.is_(None))
                .values(
                    payment_status=TICKET_PAYMENT_STATUS[target],
                    payment_intent_id=event.payment_intent_id,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            tickets_updated = result.rowcount or 0
        self._session.flush()

        LOGGER.info(
            "payment_status_changed",
            extra={
                "payment_intent_id": event.payment_intent_id,
                "from_status": current.value,
                "to_status": target.value,
                "tickets_updated": tickets_updated,
            },
        )
        receipt.update(status=target.value, tickets_updated=tickets_updated, outcome=DeliveryOutcome.OK.value)
        return DeliveryOutcome.OK, receipt

"""Payment creation on behalf of authenticated users."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from planner_core.clients.payments import PaymentClient
from planner_core.core.errors import NotFoundError, ValidationFailedError
from planner_core.models.base import utcnow
from planner_core.models.payment import Payment, PaymentStatus
from planner_core.models.ticket import Ticket
from planner_core.schemas.payment import PaymentCreate
from planner_core.services.system_logs import SystemLogService

logger = logging.getLogger("planner_core.services.payments")

PAYMENT_METHODS = frozenset({"card", "mobile_money", "bank_transfer", "paypal"})


class PaymentNotFoundError(NotFoundError):
    default_code = "PAYMENT_NOT_FOUND"


class PaymentService:
    def __init__(self, session: Session, client: PaymentClient) -> None:
        self._session = session
        self._client = client

    async def create_payment(self, *, user_id: int, request: PaymentCreate) -> Tuple[Payment, Optional[str]]:
        """Open a payment intent and persist it as ``pending``; returns the row and the client secret."""

        if request.amount is None or request.amount <= Decimal("0"):
            raise ValidationFailedError("amount must be greater than zero", code="INVALID_AMOUNT")
        if request.payment_method not in PAYMENT_METHODS:
            raise ValidationFailedError(
                f"Unsupported payment method {request.payment_method!r}",
                code="INVALID_PAYMENT_METHOD",
                details={"allowed": sorted(PAYMENT_METHODS)},
            )

        currency = request.currency.upper()
        intent = await self._client.process_payment(
            user_id=user_id,
            amount=request.amount,
            currency=currency,
            payment_method=request.payment_method,
            metadata={
                "event_id": request.event_id,
                "template_id": request.template_id,
                "ticket_ids": request.ticket_ids,
            },
        )

        payment = Payment(
            payment_intent_id=intent.payment_intent_id,
            user_id=user_id,
            event_id=request.event_id,
            template_id=request.template_id,
            amount=request.amount,
            currency=currency,
            payment_method=request.payment_method,
            gateway=intent.gateway,
            status=PaymentStatus.PENDING.value,
            ticket_ids=list(request.ticket_ids),
        )
        self._session.add(payment)
        self._session.flush()

        if request.ticket_ids:
            self._session.execute(
                update(Ticket)
                .where(Ticket.id.in_(request.ticket_ids))
                .values(
                    payment_intent_id=intent.payment_intent_id,
                    payment_status=PaymentStatus.PENDING.value,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )

        SystemLogService(self._session).record(
            action="payment.create",
            actor_id=user_id,
            resource_type="payment",
            resource_id=payment.id,
            context={"payment_intent_id": payment.payment_intent_id, "amount": str(payment.amount)},
        )
        logger.info(
            "payment_created",
            extra={"payment_id": payment.id, "payment_intent_id": payment.payment_intent_id, "user_id": user_id},
        )
        return payment, intent.client_secret

    def get_payment(self, payment_id: int, *, user_id: int, is_admin: bool = False) -> Payment:
        payment = self._session.get(Payment, payment_id)
        if payment is None or (payment.user_id != user_id and not is_admin):
            raise PaymentNotFoundError(f"Payment {payment_id} not found")
        return payment

    def get_by_intent(self, payment_intent_id: str) -> Optional[Payment]:
        return self._session.scalar(select(Payment).where(Payment.payment_intent_id == payment_intent_id))

"""Payment intents and the payment gateway callback."""

from __future__ import annotations

from typing import Any, Dict, Mapping

from fastapi import APIRouter, Depends, Request, status
from starlette.concurrency import run_in_threadpool

from planner_core.api.dependencies import get_payment_service, require_permission
from planner_core.clients.auth import AuthUser
from planner_core.core.config import get_settings
from planner_core.core.database import session_scope
from planner_core.schemas.envelope import Envelope
from planner_core.schemas.payment import PaymentCreate, PaymentCreated, PaymentRead
from planner_core.services.payments import PaymentService
from planner_core.webhooks.payments import PaymentWebhookReconciler

router = APIRouter()


@router.post("", response_model=Envelope[PaymentCreated], status_code=status.HTTP_201_CREATED)
async def create_payment(
    payload: PaymentCreate,
    user: AuthUser = Depends(require_permission("payments.create")),
    service: PaymentService = Depends(get_payment_service),
) -> Envelope[PaymentCreated]:
    payment, client_secret = await service.create_payment(user_id=user.id, request=payload)
    return Envelope(
        data=PaymentCreated(payment=PaymentRead.model_validate(payment), client_secret=client_secret),
        message="Payment intent created",
    )


@router.post("/webhooks", response_model=Envelope[Dict[str, Any]])
async def receive_payment_webhook(
    request: Request,
) -> Envelope[Dict[str, Any]]:
    raw_body = await request.body()
    receipt = await run_in_threadpool(_reconcile, raw_body, dict(request.headers))
    return Envelope(data=receipt, message="Webhook processed")


def _reconcile(raw_body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
    with session_scope() as session:
        return PaymentWebhookReconciler(session, get_settings().payment_webhook_secret).handle(raw_body, headers)


@router.get("/{payment_id}", response_model=Envelope[PaymentRead])
def get_payment(
    payment_id: int,
    user: AuthUser = Depends(require_permission("payments.read")),
    service: PaymentService = Depends(get_payment_service),
) -> Envelope[PaymentRead]:
    payment = service.get_payment(payment_id, user_id=user.id, is_admin=user.is_admin)
    return Envelope(data=PaymentRead.model_validate(payment))

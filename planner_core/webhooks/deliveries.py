"""Delivery ledger: claims inbound webhooks by dedup key and records outcomes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from planner_core.core.config import get_settings
from planner_core.core.errors import StateConflictError
from planner_core.models.base import utcnow
from planner_core.models.webhook_delivery import DeliveryOutcome, WebhookDelivery

LOGGER = logging.getLogger("planner_core.webhooks.deliveries")


class DeliveryInProgressError(StateConflictError):
    default_code = "IN_PROGRESS"


class DeliveryLedger:
    """Commits every state change it makes, independently of the caller's work."""

    def __init__(self, session: Session, source: str, *, stale_after: Optional[timedelta] = None) -> None:
        self._session = session
        self._source = source
        self._stale_after = stale_after or timedelta(seconds=get_settings().request_timeout_seconds)

    def claim(
        self,
        key: str,
        *,
        subject_id: str,
        event_type: str,
        payload: Dict[str, Any],
        request_id: Optional[str],
    ) -> Tuple[WebhookDelivery, bool]:
        """Return ``(delivery, replay)``.

        ``replay`` is True when the key was already processed to a final
        outcome; the caller should answer with ``delivery.response_body``.
        A delivery still ``in_progress`` raises unless it has been untouched
        for longer than the request deadline; such a delivery, like one that
        ended in ``error``, is reclaimed for another attempt.
        """

        existing = self._session.scalar(select(WebhookDelivery).where(WebhookDelivery.dedup_key == key))
        if existing is not None:
            if existing.outcome.is_final:
                LOGGER.info(
                    "webhook_delivery_replayed",
                    extra={"source": self._source, "subject_id": subject_id, "outcome": existing.outcome.value},
                )
                return existing, True
            if existing.outcome is DeliveryOutcome.IN_PROGRESS and not self._is_stale(existing.updated_at):
                raise DeliveryInProgressError("Delivery is already being processed")
            return self._reclaim(existing.id, subject_id, request_id), False

        delivery = WebhookDelivery(
            dedup_key=key,
            source=self._source,
            job_id=subject_id,
            event_type=event_type,
            signature_ok=True,
            normalized_payload=payload,
            outcome=DeliveryOutcome.IN_PROGRESS,
            request_id=request_id,
        )
        self._session.add(delivery)
        try:
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise DeliveryInProgressError("Delivery is already being processed") from exc
        return delivery, False

    def complete(
        self,
        delivery_id: int,
        outcome: DeliveryOutcome,
        response_body: Dict[str, Any],
        processing_time_ms: int,
    ) -> None:
        delivery = self._session.get(WebhookDelivery, delivery_id)
        delivery.outcome = outcome
        delivery.response_body = response_body
        delivery.processing_time_ms = processing_time_ms
        delivery.error_message = None
        self._session.commit()

    def fail(self, delivery_id: int, exc: BaseException, processing_time_ms: int) -> None:
        delivery = self._session.get(WebhookDelivery, delivery_id)
        if delivery is None:
            return
        delivery.outcome = DeliveryOutcome.ERROR
        delivery.error_message = f"{type(exc).__name__}: {exc}"[:2000]
        delivery.processing_time_ms = processing_time_ms
        self._session.commit()

    def _stale_cutoff(self) -> datetime:
        return utcnow() - self._stale_after

    def _is_stale(self, updated_at: Optional[datetime]) -> bool:
        if updated_at is None:
            return True
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return updated_at < self._stale_cutoff()

    def _reclaim(self, delivery_id: int, subject_id: str, request_id: Optional[str]) -> WebhookDelivery:
        result = self._session.execute(
            update(WebhookDelivery)
            .where(WebhookDelivery.id == delivery_id)
            .where(
                or_(
                    WebhookDelivery.outcome == DeliveryOutcome.ERROR,
                    and_(
                        WebhookDelivery.outcome == DeliveryOutcome.IN_PROGRESS,
                        WebhookDelivery.updated_at < self._stale_cutoff(),
                    ),
                )
            )
            .values(
                outcome=DeliveryOutcome.IN_PROGRESS,
                attempts=WebhookDelivery.attempts + 1,
                request_id=request_id,
                error_message=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self._session.commit()
        if result.rowcount != 1:
            raise DeliveryInProgressError("Delivery is already being processed")
        LOGGER.info(
            "webhook_delivery_reclaimed",
            extra={"source": self._source, "subject_id": subject_id, "delivery_id": delivery_id},
        )
        return self._session.get(WebhookDelivery, delivery_id, populate_existing=True)

"""Notification service client."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx

from planner_core.core.config import get_settings

LOGGER = logging.getLogger("planner_core.clients.notifications")

JOB_COMPLETED_TEMPLATE = "ticket_generation_completed"
JOB_FAILED_TEMPLATE = "ticket_generation_failed"


class NotificationClient(Protocol):
    async def send(self, template: str, recipient_user_id: int, data: Dict[str, Any]) -> None:
        ...


class LoggingNotificationClient(NotificationClient):
    """Logs notifications instead of sending them."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, int, Dict[str, Any]]] = []

    async def send(self, template: str, recipient_user_id: int, data: Dict[str, Any]) -> None:
        self.sent.append((template, recipient_user_id, data))
        LOGGER.info(
            "notification_send_mock",
            extra={"template": template, "recipient_user_id": recipient_user_id},
        )


class HttpNotificationClient(NotificationClient):
    def __init__(self, *, base_url: str, timeout: float = 10.0) -> None:
        self._url = f"{base_url.rstrip('/')}/api/notifications/send"
        self._timeout = timeout

    async def send(self, template: str, recipient_user_id: int, data: Dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                self._url,
                json={"template": template, "user_id": recipient_user_id, "data": data},
            )
            response.raise_for_status()


async def notify_safely(
    client: NotificationClient,
    template: str,
    recipient_user_id: Optional[int],
    data: Dict[str, Any],
) -> bool:
    """Send a notification; failures are logged and never raised."""

    if recipient_user_id is None:
        return False
    try:
        await client.send(template, recipient_user_id, data)
    except Exception:  # noqa: BLE001
        LOGGER.warning(
            "notification_failed",
            extra={"template": template, "recipient_user_id": recipient_user_id},
            exc_info=True,
        )
        return False
    return True


_notification_client: Optional[NotificationClient] = None


def get_notification_client() -> NotificationClient:
    global _notification_client
    if _notification_client is None:
        settings = get_settings()
        if settings.notification_service_url:
            _notification_client = HttpNotificationClient(
                base_url=settings.notification_service_url,
                timeout=settings.http_timeout_seconds,
            )
        else:
            _notification_client = LoggingNotificationClient()
    return _notification_client


def set_notification_client(client: Optional[NotificationClient]) -> None:
    global _notification_client
    _notification_client = client

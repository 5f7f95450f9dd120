"""Activity log writer for operator-visible actions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from planner_core.core.logging import request_id_var
from planner_core.models.system_log import SystemLog


class SystemLogService:
    """Persists system log rows and mirrors them to structured logs."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._logger = logging.getLogger("planner_core.system_logs")

    def record(
        self,
        *,
        action: str,
        actor_id: Optional[int],
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        message: Optional[str] = None,
        level: str = "info",
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> SystemLog:
        entry = SystemLog(
            level=level,
            action=action,
            message=message,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            correlation_id=correlation_id or request_id_var.get(),
            context=context or {},
        )
        self._session.add(entry)
        self._session.flush()

        self._logger.info(
            "system_log_recorded",
            extra={
                "action": action,
                "actor_id": actor_id,
                "resource_type": resource_type,
                "resource_id": entry.resource_id,
            },
        )
        return entry

    def list_for_resource(self, resource_type: str, resource_id: Any) -> list[SystemLog]:
        return list(
            self._session.scalars(
                select(SystemLog)
                .where(SystemLog.resource_type == resource_type)
                .where(SystemLog.resource_id == str(resource_id))
                .order_by(SystemLog.id)
            )
        )

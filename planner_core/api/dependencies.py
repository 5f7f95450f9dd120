"""Dependency injection helpers for FastAPI routes."""

from __future__ import annotations

import hmac
from typing import Awaitable, Callable, Iterator, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from planner_core.clients.auth import AuthUser, get_auth_client, get_permission_checker
from planner_core.clients.payments import get_payment_client
from planner_core.core.config import get_settings
from planner_core.core.database import get_session
from planner_core.core.errors import AuthenticationError, PermissionDeniedError
from planner_core.services.generation_jobs import GenerationJobService
from planner_core.services.payments import PaymentService
from planner_core.services.scans import ScanValidationService


def get_db_session() -> Iterator[Session]:
    yield from get_session()


async def get_current_user(authorization: Optional[str] = Header(default=None)) -> AuthUser:
    if not authorization:
        raise AuthenticationError("Authorization header required", code="MISSING_TOKEN")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Bearer token required", code="NOT_AUTHENTICATED")
    return await get_auth_client().validate_token(token.strip())


def require_permission(permission: str) -> Callable[..., Awaitable[AuthUser]]:
    """Dependency factory: the current user, provided they hold ``permission``."""

    async def dependency(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if not await get_permission_checker().has_permission(user, permission):
            raise PermissionDeniedError(
                f"Permission {permission} required",
                details={"permission": permission},
            )
        return user

    return dependency


def require_internal_token(x_internal_token: Optional[str] = Header(default=None, alias="X-Internal-Token")) -> None:
    expected = get_settings().internal_service_token
    if expected is None:
        return
    if not x_internal_token or not hmac.compare_digest(x_internal_token, expected):
        raise AuthenticationError("Internal service token required", code="INVALID_INTERNAL_TOKEN")


def get_generation_job_service(session: Session = Depends(get_db_session)) -> GenerationJobService:
    return GenerationJobService(session)


def get_payment_service(session: Session = Depends(get_db_session)) -> PaymentService:
    return PaymentService(session, get_payment_client())


def get_scan_validation_service(session: Session = Depends(get_db_session)) -> ScanValidationService:
    return ScanValidationService(session)

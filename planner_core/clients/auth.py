"""Auth service client and cached permission checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Set

import httpx

from planner_core.core.config import get_settings
from planner_core.core.errors import AuthenticationError, CollaboratorUnavailableError
from planner_core.services.cache import PermissionCache, get_permission_cache

LOGGER = logging.getLogger("planner_core.clients.auth")

ADMIN_ROLES = frozenset({"admin", "super_admin"})


class AuthServiceError(CollaboratorUnavailableError):
    default_code = "AUTH_ERROR"


@dataclass
class AuthUser:
    id: int
    email: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return any(role in ADMIN_ROLES for role in self.roles)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AuthUser":
        roles = payload.get("roles")
        if roles is None and payload.get("role"):
            roles = [payload["role"]]
        return cls(
            id=int(payload["id"]),
            email=payload.get("email"),
            roles=[str(role) for role in roles or []],
            first_name=payload.get("first_name", payload.get("firstName")),
            last_name=payload.get("last_name", payload.get("lastName")),
        )


class AuthClient(Protocol):
    async def validate_token(self, token: str) -> AuthUser:
        ...

    async def check_permission(self, user_id: int, permission: str) -> bool:
        ...

    async def get_user_roles(self, user_id: int) -> List[str]:
        ...

    async def get_users_batch(self, user_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        ...


class MockAuthClient(AuthClient):
    """In-process stand-in used when no auth service URL is configured."""

    def __init__(
        self,
        *,
        users: Optional[Dict[str, AuthUser]] = None,
        grants: Optional[Dict[int, Set[str]]] = None,
        expired_tokens: Iterable[str] = (),
        default_user: Optional[AuthUser] = None,
    ) -> None:
        self.users: Dict[str, AuthUser] = dict(users or {})
        self.grants: Dict[int, Set[str]] = {key: set(value) for key, value in (grants or {}).items()}
        self.expired_tokens = set(expired_tokens)
        self.default_user = default_user
        self.permission_checks = 0

    def add_user(self, token: str, user: AuthUser, permissions: Iterable[str] = ()) -> None:
        self.users[token] = user
        self.grants.setdefault(user.id, set()).update(permissions)

    async def validate_token(self, token: str) -> AuthUser:
        if token in self.expired_tokens:
            raise AuthenticationError("Token expired", code="TOKEN_EXPIRED")
        user = self.users.get(token) or self.default_user
        if user is None:
            raise AuthenticationError("Invalid token", code="INVALID_TOKEN")
        return user

    async def check_permission(self, user_id: int, permission: str) -> bool:
        self.permission_checks += 1
        return permission in self.grants.get(user_id, set())

    async def get_user_roles(self, user_id: int) -> List[str]:
        for user in self.users.values():
            if user.id == user_id:
                return list(user.roles)
        return []

    async def get_users_batch(self, user_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        wanted = set(user_ids)
        found: Dict[int, Dict[str, Any]] = {}
        for user in list(self.users.values()) + ([self.default_user] if self.default_user else []):
            if user.id in wanted:
                found[user.id] = {
                    "id": user.id,
                    "email": user.email,
                    "first_name": user.first_name,
                    "last_name": user.last_name,
                }
        return found


class HttpAuthClient(AuthClient):
    """Talks to the auth service over HTTP."""

    def __init__(self, *, base_url: str, service_token: Optional[str] = None, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"Content-Type": "application/json"}
        if service_token:
            self._headers["Authorization"] = f"Bearer {service_token}"

    async def validate_token(self, token: str) -> AuthUser:
        response = await self._request("POST", "/api/auth/validate-token", json={"token": token})
        if response.status_code in (400, 401, 403):
            code = "INVALID_TOKEN"
            if "expired" in response.text.lower():
                code = "TOKEN_EXPIRED"
            raise AuthenticationError("Token rejected by auth service", code=code)
        self._raise_for_status(response, "validate_token")

        payload = _unwrap(response.json())
        user = payload.get("user", payload) if isinstance(payload, Mapping) else None
        if not isinstance(user, Mapping) or "id" not in user:
            raise AuthenticationError("Auth service returned no user", code="INVALID_TOKEN")
        return AuthUser.from_payload(user)

    async def check_permission(self, user_id: int, permission: str) -> bool:
        response = await self._request(
            "POST",
            "/api/authorizations/check",
            json={"user_id": user_id, "permission": permission},
        )
        if response.status_code == 403:
            return False
        self._raise_for_status(response, "check_permission")
        payload = _unwrap(response.json())
        if isinstance(payload, Mapping):
            for key in ("allowed", "hasPermission", "granted", "authorized"):
                if key in payload:
                    return bool(payload[key])
        return bool(payload)

    async def get_user_roles(self, user_id: int) -> List[str]:
        response = await self._request("GET", f"/api/users/{user_id}/roles")
        self._raise_for_status(response, "get_user_roles")
        payload = _unwrap(response.json())
        if isinstance(payload, Mapping):
            payload = payload.get("roles", [])
        return [str(role.get("name", role)) if isinstance(role, Mapping) else str(role) for role in payload or []]

    async def get_users_batch(self, user_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        response = await self._request("POST", "/api/users/batch", json={"user_ids": ids})
        self._raise_for_status(response, "get_users_batch")
        payload = _unwrap(response.json())
        if isinstance(payload, Mapping):
            payload = payload.get("users", [])
        return {int(user["id"]): dict(user) for user in payload or [] if isinstance(user, Mapping) and "id" in user}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, headers=self._headers) as client:
                return await client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            LOGGER.error("auth_service_request_error", extra={"path": path, "error": str(exc)})
            raise AuthServiceError("Auth service unreachable") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.status_code >= 400:
            LOGGER.error(
                "auth_service_http_error",
                extra={"operation": operation, "status_code": response.status_code},
            )
            raise AuthServiceError(f"Auth service returned {response.status_code}")


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, Mapping) and "data" in payload and ("success" in payload or len(payload) == 1):
        return payload["data"]
    return payload


class PermissionChecker:
    """Permission decisions through the cache, with admin bypass."""

    def __init__(self, client: AuthClient, cache: PermissionCache) -> None:
        self._client = client
        self._cache = cache

    async def has_permission(self, user: AuthUser, permission: str) -> bool:
        if user.is_admin:
            return True
        key = (str(user.id), permission)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        allowed = await self._client.check_permission(user.id, permission)
        self._cache.set(key, allowed, user_id=str(user.id))
        LOGGER.debug(
            "permission_checked",
            extra={"user_id": user.id, "permission": permission, "allowed": allowed},
        )
        return allowed

    def invalidate_user(self, user_id: int) -> None:
        self._cache.invalidate_for_user(str(user_id))
        LOGGER.info("permission_cache_invalidated", extra={"user_id": user_id})


_auth_client: Optional[AuthClient] = None


def get_auth_client() -> AuthClient:
    global _auth_client
    if _auth_client is not None:
        return _auth_client

    settings = get_settings()
    if settings.auth_service_url:
        _auth_client = HttpAuthClient(
            base_url=settings.auth_service_url,
            service_token=settings.internal_service_token,
            timeout=settings.http_timeout_seconds,
        )
    else:
        default_user = None
        if settings.environment in ("local", "development"):
            default_user = AuthUser(id=1, email="dev@localhost", roles=["admin"])
        LOGGER.warning(
            "auth_service_not_configured",
            extra={"mock_default_user": default_user is not None},
        )
        _auth_client = MockAuthClient(default_user=default_user)
    return _auth_client


def set_auth_client(client: Optional[AuthClient]) -> None:
    """Override the cached client (primarily for tests)."""

    global _auth_client
    _auth_client = client


def get_permission_checker() -> PermissionChecker:
    return PermissionChecker(get_auth_client(), get_permission_cache())

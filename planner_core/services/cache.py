"""Permission decision cache, in memory or on Upstash Redis."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import RLock
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set, Tuple, cast

import httpx

from planner_core.core.config import get_settings

PermissionCacheKey = Tuple[str, str]


class PermissionCache(Protocol):
    """Contract for caching ``(user_id, permission)`` decisions."""

    def get(self, key: PermissionCacheKey) -> Optional[bool]:
        ...

    def set(self, key: PermissionCacheKey, value: bool, *, user_id: str) -> None:
        ...

    def invalidate(self) -> None:
        ...

    def invalidate_for_user(self, user_id: str) -> None:
        ...


@dataclass
class InMemoryPermissionCache(PermissionCache):
    """Thread-safe TTL map with per-user invalidation."""

    ttl_seconds: float = 300.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def __post_init__(self) -> None:
        self._store: Dict[PermissionCacheKey, Tuple[bool, float]] = {}
        self._user_index: Dict[str, Set[PermissionCacheKey]] = {}
        self._lock = RLock()

    def get(self, key: PermissionCacheKey) -> Optional[bool]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self.clock() >= expires_at:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: PermissionCacheKey, value: bool, *, user_id: str) -> None:
        with self._lock:
            self._store[key] = (value, self.clock() + self.ttl_seconds)
            self._user_index.setdefault(user_id, set()).add(key)

    def invalidate(self) -> None:
        with self._lock:
            self._store.clear()
            self._user_index.clear()

    def invalidate_for_user(self, user_id: str) -> None:
        with self._lock:
            for key in self._user_index.pop(user_id, set()):
                self._store.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class RedisPermissionCache(PermissionCache):
    """Upstash Redis over REST. Writes for one decision go out as a single pipeline."""

    def __init__(
        self,
        *,
        url: str,
        token: str,
        prefix: str,
        ttl_seconds: int,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=5.0,
        )
        self._ttl_seconds = max(ttl_seconds, 1)
        self._prefix = prefix
        self._users_key = f"{prefix}:users"

    def get(self, key: PermissionCacheKey) -> Optional[bool]:
        result = self._command("GET", self._decision_key(key))
        return None if result is None else str(result) == "1"

    def set(self, key: PermissionCacheKey, value: bool, *, user_id: str) -> None:
        ttl = str(self._ttl_seconds)
        decision_key = self._decision_key(key)
        user_key = self._user_key(user_id)
        self._pipeline(
            ["SET", decision_key, "1" if value else "0", "EX", ttl],
            ["SADD", user_key, decision_key],
            ["EXPIRE", user_key, ttl],
            ["SADD", self._users_key, user_id],
            ["EXPIRE", self._users_key, ttl],
        )

    def invalidate(self) -> None:
        for user_id in cast(Sequence[str], self._command("SMEMBERS", self._users_key) or []):
            self.invalidate_for_user(user_id)
        self._command("DEL", self._users_key)

    def invalidate_for_user(self, user_id: str) -> None:
        user_key = self._user_key(user_id)
        decision_keys = list(cast(Sequence[str], self._command("SMEMBERS", user_key) or []))
        self._pipeline(
            ["DEL", user_key, *decision_keys],
            ["SREM", self._users_key, user_id],
        )

    def _decision_key(self, key: PermissionCacheKey) -> str:
        user_id, permission = key
        return f"{self._prefix}:perm:{user_id}:{permission}"

    def _user_key(self, user_id: str) -> str:
        return f"{self._prefix}:user:{user_id}"

    def _command(self, *command: str) -> Optional[object]:
        response = self._client.post("/", json=list(command))
        response.raise_for_status()
        return response.json().get("result")

    def _pipeline(self, *commands: List[str]) -> List[Optional[object]]:
        response = self._client.post("/pipeline", json=list(commands))
        response.raise_for_status()
        return [entry.get("result") for entry in response.json()]


_shared_cache: Optional[PermissionCache] = None


def get_permission_cache() -> PermissionCache:
    """Return the process-wide permission cache instance."""

    global _shared_cache
    if _shared_cache is not None:
        return _shared_cache

    settings = get_settings()
    if settings.redis_url and settings.redis_token:
        _shared_cache = RedisPermissionCache(
            url=settings.redis_url,
            token=settings.redis_token,
            prefix=settings.redis_cache_prefix,
            ttl_seconds=settings.permission_cache_ttl,
        )
    else:
        _shared_cache = InMemoryPermissionCache(ttl_seconds=settings.permission_cache_ttl)
    return _shared_cache


def set_permission_cache(cache: Optional[PermissionCache]) -> None:
    """Override the cached instance (primarily for tests)."""

    global _shared_cache
    _shared_cache = cache

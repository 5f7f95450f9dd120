"""Response guard: request ids, timing headers, deadline and last-resort 500."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from planner_core.core.logging import request_id_var

LOGGER = logging.getLogger("planner_core.api.middleware")


class ResponseGuardMiddleware:
    """Awaits the downstream app under a deadline.

    A timeout yields ``504 ROUTE_TIMEOUT`` and an escaped exception yields
    ``500 INTERNAL_ERROR``, in both cases only if no response has started.
    """

    def __init__(self, app: ASGIApp, *, timeout_seconds: float = 30.0) -> None:
        self.app = app
        self.timeout_seconds = timeout_seconds

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get("x-request-id") or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        response_started = False

        async def guarded_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                headers = MutableHeaders(scope=message)
                headers["X-Request-Id"] = request_id
                headers["X-Response-Time"] = f"{(time.perf_counter() - started) * 1000:.1f}ms"
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, guarded_send), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            LOGGER.error(
                "route_timeout",
                extra={"path": scope.get("path"), "timeout_seconds": self.timeout_seconds, "response_started": response_started},
            )
            if not response_started:
                await self._emit(send, 504, "Request timed out", "ROUTE_TIMEOUT", request_id, started)
        except Exception:
            LOGGER.exception("unhandled_request_error", extra={"path": scope.get("path")})
            if response_started:
                raise
            await self._emit(send, 500, "Internal server error", "INTERNAL_ERROR", request_id, started)
        finally:
            request_id_var.reset(token)

    @staticmethod
    async def _emit(send: Send, status: int, message: str, code: str, request_id: str, started: float) -> None:
        body = json.dumps({"success": False, "error": message, "code": code}).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode("latin-1")),
                    (b"x-request-id", request_id.encode("latin-1")),
                    (b"x-response-time", f"{(time.perf_counter() - started) * 1000:.1f}ms".encode("latin-1")),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})

from __future__ import annotations

import asyncio

from fastapi import FastAPI
from fastapi.testclient import TestClient

from planner_core.api.middleware import ResponseGuardMiddleware


def _build_app(timeout_seconds: float = 5.0) -> FastAPI:
    app = FastAPI()
    app.add_middleware(ResponseGuardMiddleware, timeout_seconds=timeout_seconds)

    @app.get("/ok")
    async def ok() -> dict:
        return {"status": "ok"}

    @app.get("/slow")
    async def slow() -> dict:
        await asyncio.sleep(1.0)
        return {"status": "late"}

    @app.get("/boom")
    async def boom() -> dict:
        raise RuntimeError("boom")

    return app


def test_headers_are_added_and_request_id_echoed() -> None:
    client = TestClient(_build_app())

    response = client.get("/ok", headers={"X-Request-Id": "req-123"})

    assert response.status_code == 200
    assert response.headers["x-request-id"] == "req-123"
    assert response.headers["x-response-time"].endswith("ms")


def test_request_id_generated_when_absent() -> None:
    client = TestClient(_build_app())

    response = client.get("/ok")

    assert len(response.headers["x-request-id"]) == 32


def test_slow_route_times_out() -> None:
    client = TestClient(_build_app(timeout_seconds=0.05))

    response = client.get("/slow")

    assert response.status_code == 504
    assert response.json() == {"success": False, "error": "Request timed out", "code": "ROUTE_TIMEOUT"}
    assert "x-request-id" in response.headers


def test_unhandled_exception_becomes_500_envelope() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)

    response = client.get("/boom")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}

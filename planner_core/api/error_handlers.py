"""Exception handlers for the FastAPI app."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from planner_core.core.errors import ServiceError

LOGGER = logging.getLogger("planner_core.api.errors")


def error_response(status_code: int, message: str, code: str, details: Optional[Any] = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": message, "code": code}
    if details is not None:
        content["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:  # noqa: WPS430
        log = LOGGER.warning if exc.status_code < 500 else LOGGER.error
        log(
            "request_failed",
            extra={"path": request.url.path, "code": exc.code, "status_code": exc.status_code},
        )
        return error_response(exc.status_code, exc.message, exc.code, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # noqa: WPS430
        return error_response(400, "Request validation failed", "MISSING_REQUIRED_FIELDS", exc.errors())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:  # noqa: WPS430
        return error_response(exc.status_code, str(exc.detail), "HTTP_ERROR")

# src/payhook/infrastructure/http/errors.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Exception handlers producing the canonical error envelope.

Layer:
    infrastructure/http

Notes:
    ``DomainError`` subclasses are mapped to HTTP by their ``code``; anything
    without a mapping is treated as a client error (400).
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from payhook.domain.exceptions.base import DomainError
from payhook.infrastructure.logging.logger import get_json_logger

log = get_json_logger(__name__)

DOMAIN_STATUS_BY_CODE: dict[str, int] = {
    "IDEMPOTENCY_KEY_INVALID": 400,
    "IDEMPOTENCY_KEY_IN_PROGRESS": 409,
    "IDEMPOTENCY_KEY_CONFLICT": 409,
    "WEBHOOK_PAYLOAD_INVALID": 400,
    "WEBHOOK_PROVIDER_UNKNOWN": 404,
    "WEBHOOK_SIGNATURE_INVALID": 401,
    "WEBHOOK_EVENT_NOT_FOUND": 404,
    "WEBHOOK_INVALID_TRANSITION": 409,
}


def _trace_id(request: Request) -> str | None:
    return getattr(request.state, "trace_id", None) or request.headers.get("X-Request-ID")


def error_envelope(
    *,
    code: str,
    http_status: int,
    message: str,
    details: dict[str, Any] | None = None,
    trace_id: str | None = None,
) -> dict[str, Any]:
    """Build the ``{"error": {...}}`` body."""
    err: dict[str, Any] = {
        "code": code,
        "http_status": http_status,
        "message": message,
        "details": details or {},
    }
    if trace_id is not None:
        err["trace_id"] = trace_id
    return {"error": err}


def status_for(exc: DomainError) -> int:
    return DOMAIN_STATUS_BY_CODE.get(exc.code, 400)


def domain_error_response(exc: DomainError, *, trace_id: str | None = None) -> JSONResponse:
    """Render a domain error as an enveloped JSON response."""
    http_status = status_for(exc)
    return JSONResponse(
        status_code=http_status,
        content=error_envelope(
            code=exc.code,
            http_status=http_status,
            message=str(exc) or exc.code,
            details=exc.details,
            trace_id=trace_id,
        ),
    )


async def handle_domain_error(request: Request, exc: DomainError) -> Response:
    log.info(
        "http.domain_error",
        extra={"extra": {"code": exc.code, "path": request.url.path}},
    )
    return domain_error_response(exc, trace_id=_trace_id(request))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> Response:
    payload = error_envelope(
        code="VALIDATION_ERROR",
        http_status=422,
        message="Request validation failed",
        details={"errors": [str(e.get("msg", "")) for e in exc.errors()]},
        trace_id=_trace_id(request),
    )
    return JSONResponse(status_code=422, content=payload)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> Response:
    payload = error_envelope(
        code="HTTP_ERROR",
        http_status=exc.status_code,
        message=exc.detail if isinstance(exc.detail, str) else "HTTP error",
        details=None if isinstance(exc.detail, str) else {"detail": exc.detail},
        trace_id=_trace_id(request),
    )
    return JSONResponse(status_code=exc.status_code, content=payload)


async def handle_unhandled_exception(request: Request, exc: Exception) -> Response:
    log.error(
        "http.unhandled_exception",
        exc_info=exc,
        extra={"extra": {"path": request.url.path}},
    )
    payload = error_envelope(
        code="INTERNAL_ERROR",
        http_status=500,
        message="Internal server error",
        trace_id=_trace_id(request),
    )
    return JSONResponse(status_code=500, content=payload)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope handlers to ``app``."""
    app.add_exception_handler(DomainError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unhandled_exception)


__all__ = [
    "DOMAIN_STATUS_BY_CODE",
    "domain_error_response",
    "error_envelope",
    "register_exception_handlers",
    "status_for",
]

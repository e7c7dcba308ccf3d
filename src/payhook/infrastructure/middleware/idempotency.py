# src/payhook/infrastructure/middleware/idempotency.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""HTTP Idempotency Middleware.

Purpose:
    Apply the idempotency guard to write requests (POST/PUT/PATCH/DELETE)
    that carry an ``Idempotency-Key`` header.

Layer:
    infrastructure

Behavior:
    Idempotency is opt-in per client: without the header the request passes
    through unchanged. With it:

        * First request → runs downstream, stores the response.
        * Same key after completion → stored response, with
          ``Idempotent-Replayed: true``, whatever the new body is.
        * Same key + same request still running → 409 ``IDEMPOTENCY_KEY_IN_PROGRESS``.
        * Same key + different request still running → 409 ``IDEMPOTENCY_KEY_CONFLICT``.
        * Downstream 4xx/5xx or exception → not stored; the key is released
          so a corrected retry runs again.

    Replays carry the original status, body bytes and ``Content-Type``.
    JSON bodies are stored as JSON; anything else is stored base64-encoded.
"""

from __future__ import annotations

import base64
import json
from collections.abc import AsyncIterator, Callable, Collection
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from payhook.adapters.repositories.idempotency_repository import SqlAlchemyIdempotencyRepository
from payhook.application.interfaces.clock import Clock
from payhook.application.use_cases.idempotency_guard import DEFAULT_TTL_SECONDS, IdempotencyGuard
from payhook.domain.entities.idempotency_record import StoredResponse
from payhook.domain.exceptions.idempotency import (
    ConflictInProgress,
    IdempotencyError,
    KeyReuseMismatch,
)
from payhook.domain.services.request_fingerprint import compute_request_hash
from payhook.infrastructure.clock.system_clock import SystemClock
from payhook.infrastructure.database.session import get_db_session
from payhook.infrastructure.http.errors import domain_error_response
from payhook.infrastructure.logging.logger import get_json_logger
from payhook.infrastructure.observability.metrics import get_idempotency_requests_total

log = get_json_logger(__name__)

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"
REPLAYED_HEADER = "Idempotent-Replayed"

GuardProvider = Callable[[], AbstractAsyncContextManager[IdempotencyGuard]]


class _UncacheableResponse(Exception):
    """Carries a downstream response that must reach the client but not the store."""

    def __init__(self, response: Response) -> None:
        super().__init__(f"downstream returned {response.status_code}")
        self.response = response


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware running write requests through :class:`IdempotencyGuard`."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        claim_attempts: int = 3,
        methods: Collection[str] | None = None,
        session_provider: Callable[[], AbstractAsyncContextManager[AsyncSession]] | None = None,
        guard_provider: GuardProvider | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: Downstream ASGI application.
            ttl_seconds: Lifetime of a claimed key.
            claim_attempts: Bounded claim retries under contention.
            methods: HTTP methods to guard; defaults to POST, PUT, PATCH, DELETE.
            session_provider: Async context manager factory yielding an
                ``AsyncSession``. Defaults to :func:`get_db_session`.
            guard_provider: Async context manager factory yielding a ready
                guard. Overrides ``session_provider`` when given.
            clock: Time source; defaults to :class:`SystemClock`.
        """
        super().__init__(app)
        self._ttl_seconds = int(ttl_seconds)
        self._claim_attempts = int(claim_attempts)
        self._methods = {m.upper() for m in (methods or {"POST", "PUT", "PATCH", "DELETE"})}
        self._session_provider = session_provider or get_db_session
        self._guard_provider: GuardProvider = guard_provider or self._sql_guard
        self._clock = clock or SystemClock()

    @asynccontextmanager
    async def _sql_guard(self) -> AsyncIterator[IdempotencyGuard]:
        async with self._session_provider() as session:
            yield IdempotencyGuard(
                store=SqlAlchemyIdempotencyRepository(session),
                clock=self._clock,
                ttl_seconds=self._ttl_seconds,
                claim_attempts=self._claim_attempts,
            )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Dispatch the request through the guard or directly downstream."""
        method = request.method.upper()
        if method not in self._methods:
            return await call_next(request)

        key = request.headers.get(IDEMPOTENCY_KEY_HEADER)
        if key is None:
            return await call_next(request)

        # Buffer the body so it can be both hashed and re-sent downstream.
        raw_body = await request.body()

        async def receive() -> dict[str, Any]:
            return {"type": "http.request", "body": raw_body, "more_body": False}

        request = Request(request.scope, receive=receive)
        request_hash = compute_request_hash(
            method=method,
            path=request.url.path,
            query_pairs=request.query_params.multi_items(),
            body=raw_body,
        )
        trace_id = request.headers.get("X-Request-ID")
        captured: dict[str, Response] = {}

        async def operation() -> StoredResponse:
            downstream = await call_next(request)
            body = await self._consume_response_body(downstream)
            rebuilt = Response(
                content=body,
                status_code=downstream.status_code,
                headers=dict(downstream.headers),
                media_type=downstream.media_type,
            )
            if downstream.status_code >= 400:
                raise _UncacheableResponse(rebuilt)
            captured["response"] = rebuilt
            return _to_stored(
                downstream.status_code, body, downstream.headers.get("content-type")
            )

        counter = get_idempotency_requests_total()
        async with self._guard_provider() as guard:
            try:
                result = await guard.execute(key, request_hash, operation)
            except _UncacheableResponse as exc:
                counter.labels(outcome="released").inc()
                return exc.response
            except IdempotencyError as exc:
                counter.labels(outcome=_outcome_for(exc)).inc()
                log.info(
                    "idempotency.rejected",
                    extra={"extra": {"code": exc.code, "path": request.url.path}},
                )
                return domain_error_response(exc, trace_id=trace_id)

        if result.replayed:
            counter.labels(outcome="replayed").inc()
            return self._replay(result.response)

        counter.labels(outcome="executed").inc()
        return captured["response"]

    @staticmethod
    def _replay(stored: StoredResponse) -> Response:
        headers = {REPLAYED_HEADER: "true"}
        if stored.body is None:
            return Response(
                status_code=stored.status_code, headers=headers, media_type=stored.media_type
            )
        if stored.encoding == "base64":
            return Response(
                content=base64.b64decode(stored.body),
                status_code=stored.status_code,
                headers=headers,
                media_type=stored.media_type,
            )
        return JSONResponse(
            status_code=stored.status_code,
            content=stored.body,
            headers=headers,
            media_type=stored.media_type or "application/json",
        )

    @staticmethod
    async def _consume_response_body(response: Any) -> bytes:
        """Buffer the body of a Response-like object.

        Notes:
            ``call_next`` returns a streaming response; its ``body_iterator``
            is drained here. Plain responses expose ``body`` directly.
        """
        raw_body = getattr(response, "body", None)
        if isinstance(raw_body, (bytes, bytearray)):
            return bytes(raw_body)

        body_iter = getattr(response, "body_iterator", None)
        if body_iter is None:
            return b""

        chunks: list[bytes] = []
        async for chunk in body_iter:
            chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode("utf-8"))
        return b"".join(chunks)


_NOT_JSON = object()


def _parse_json(body: bytes) -> Any:
    """Return the JSON value of ``body``, or ``_NOT_JSON`` if it does not parse."""
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return _NOT_JSON


def _is_json_media(media_type: str | None) -> bool:
    if not media_type:
        return False
    essence = media_type.split(";", 1)[0].strip().lower()
    return essence == "application/json" or essence.endswith("+json")


def _to_stored(status_code: int, body: bytes, media_type: str | None) -> StoredResponse:
    """Build the stored form of a downstream response."""
    if not body:
        return StoredResponse(status_code=status_code, media_type=media_type)
    parsed = _parse_json(body) if _is_json_media(media_type) else _NOT_JSON
    if parsed is not _NOT_JSON:
        return StoredResponse(status_code=status_code, body=parsed, media_type=media_type)
    return StoredResponse(
        status_code=status_code,
        body=base64.b64encode(body).decode("ascii"),
        media_type=media_type,
        encoding="base64",
    )


def _outcome_for(exc: IdempotencyError) -> str:
    if isinstance(exc, ConflictInProgress):
        return "in_progress"
    if isinstance(exc, KeyReuseMismatch):
        return "mismatch"
    return "invalid"


__all__ = ["IDEMPOTENCY_KEY_HEADER", "REPLAYED_HEADER", "IdempotencyMiddleware"]

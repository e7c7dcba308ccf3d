# tests/unit/infrastructure/http/test_payhook_errors.py
from __future__ import annotations

from typing import Any

import pytest
from fastapi import FastAPI, HTTPException, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel

from payhook.domain.exceptions.base import DomainError
from payhook.domain.exceptions.idempotency import KeyReuseMismatch
from payhook.domain.exceptions.webhooks import (
    InvalidSignature,
    UnknownProvider,
    WebhookEventNotFound,
)
from payhook.infrastructure.http import errors


class Payload(BaseModel):
    value: int


def _app() -> FastAPI:
    app = FastAPI()
    errors.register_exception_handlers(app)

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):  # type: ignore[no-untyped-def]
        request.state.trace_id = "trace-xyz"
        return await call_next(request)

    @app.get("/signature")
    async def signature() -> None:
        raise InvalidSignature("Invalid webhook signature.", details={"provider": "stripe"})

    @app.get("/generic")
    async def generic() -> None:
        raise DomainError("something odd")

    @app.post("/validation")
    async def validation(body: Payload) -> dict[str, Any]:
        return {"value": body.value}

    @app.get("/http-exc")
    async def http_exc() -> None:
        raise HTTPException(status_code=404, detail="not found")

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("kaboom")

    return app


@pytest.fixture
def client() -> TestClient:
    return TestClient(_app(), raise_server_exceptions=False)


@pytest.mark.parametrize(
    ("exc", "status"),
    [
        (InvalidSignature(), 401),
        (UnknownProvider(), 404),
        (WebhookEventNotFound(), 404),
        (KeyReuseMismatch(), 409),
        (DomainError(), 400),
    ],
)
def test_status_for_maps_codes(exc: DomainError, status: int) -> None:
    assert errors.status_for(exc) == status


def test_domain_error_is_enveloped_with_trace_id(client: TestClient) -> None:
    response = client.get("/signature")

    assert response.status_code == 401
    assert response.json() == {
        "error": {
            "code": "WEBHOOK_SIGNATURE_INVALID",
            "http_status": 401,
            "message": "Invalid webhook signature.",
            "details": {"provider": "stripe"},
            "trace_id": "trace-xyz",
        }
    }


def test_unmapped_domain_error_is_a_client_error(client: TestClient) -> None:
    response = client.get("/generic")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "DOMAIN_ERROR"


def test_validation_and_http_errors_share_the_envelope(client: TestClient) -> None:
    invalid = client.post("/validation", json={"value": "nope"})
    missing = client.get("/http-exc")

    assert invalid.status_code == 422
    assert invalid.json()["error"]["code"] == "VALIDATION_ERROR"
    assert missing.status_code == 404
    assert missing.json()["error"]["message"] == "not found"


def test_unhandled_exception_becomes_500(client: TestClient) -> None:
    response = client.get("/boom")

    assert response.status_code == 500
    body = response.json()["error"]
    assert body["code"] == "INTERNAL_ERROR"
    assert "kaboom" not in body["message"]

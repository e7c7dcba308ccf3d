# src/payhook/adapters/routers/webhooks_router.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Webhook Intake Router.

Summary:
    ``POST /v1/webhooks/{provider}`` accepts a signed provider event and
    stores it once per ``(provider, external_event_id)``.

Layer:
    adapters/routers

Responses:
    * 202 ``{"event_id", "duplicate": false}``: newly stored.
    * 200 ``{"event_id", "duplicate": true}``: already received.
    * 401 ``WEBHOOK_SIGNATURE_INVALID``, 404 ``WEBHOOK_PROVIDER_UNKNOWN``,
      400 ``WEBHOOK_PAYLOAD_INVALID`` via the error envelope.

Notes:
    Identifier extraction is lenient: an unparseable body yields blank
    identifiers, so a bad signature is still reported before a bad payload.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response, status

from payhook.adapters.schemas.http.envelopes import ErrorEnvelope, WebhookAcceptedResponse
from payhook.application.use_cases.webhook_processor import WebhookProcessor
from payhook.dependencies.webhooks import get_webhook_processor
from payhook.domain.exceptions.webhooks import (
    InvalidSignature,
    InvalidWebhookEvent,
    UnknownProvider,
)
from payhook.infrastructure.observability.metrics import get_webhook_ingest_total

router = APIRouter(prefix="/v1/webhooks", tags=["Webhooks"])

DEFAULT_SIGNATURE_HEADER = "X-Webhook-Signature"

SIGNATURE_HEADERS: dict[str, str] = {
    "stripe": "Stripe-Signature",
    "paystack": "X-Paystack-Signature",
}

Extractor = Callable[[Any], tuple[str, str]]


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _extract_stripe(body: Any) -> tuple[str, str]:
    return _text(body.get("id")), _text(body.get("type"))


def _extract_paystack(body: Any) -> tuple[str, str]:
    data = body.get("data")
    if not isinstance(data, dict):
        data = {}
    external_id = data.get("id")
    if external_id is None:
        external_id = data.get("reference")
    return _text(external_id), _text(body.get("event"))


def _extract_generic(body: Any) -> tuple[str, str]:
    event_type = body.get("type")
    if event_type is None:
        event_type = body.get("event")
    return _text(body.get("id")), _text(event_type)


EXTRACTORS: dict[str, Extractor] = {
    "stripe": _extract_stripe,
    "paystack": _extract_paystack,
}


def extract_identifiers(provider: str, raw_body: bytes) -> tuple[str, str]:
    """Return ``(external_event_id, event_type)`` from a provider payload.

    Blank strings are returned when the body is not a JSON object.
    """
    try:
        body = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError):
        return "", ""
    if not isinstance(body, dict):
        return "", ""
    return EXTRACTORS.get(provider, _extract_generic)(body)


@router.post(
    "/{provider}",
    response_model=WebhookAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        200: {"model": WebhookAcceptedResponse, "description": "Duplicate delivery"},
        400: {"model": ErrorEnvelope},
        401: {"model": ErrorEnvelope},
        404: {"model": ErrorEnvelope},
    },
    summary="Receive a provider webhook",
)
async def receive_webhook(
    provider: str,
    request: Request,
    response: Response,
    processor: Annotated[WebhookProcessor, Depends(get_webhook_processor)],
) -> WebhookAcceptedResponse:
    """Verify, deduplicate and store one provider event."""
    normalized = provider.strip().lower()
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADERS.get(normalized, DEFAULT_SIGNATURE_HEADER))
    external_event_id, event_type = extract_identifiers(normalized, raw_body)

    counter = get_webhook_ingest_total()
    try:
        result = await processor.ingest(
            provider=normalized,
            external_event_id=external_event_id,
            event_type=event_type,
            payload=raw_body,
            signature=signature,
        )
    except InvalidSignature:
        counter.labels(provider=normalized, outcome="invalid_signature").inc()
        raise
    except UnknownProvider:
        counter.labels(provider=normalized, outcome="unknown_provider").inc()
        raise
    except InvalidWebhookEvent:
        counter.labels(provider=normalized, outcome="invalid_payload").inc()
        raise

    if result.duplicate:
        counter.labels(provider=normalized, outcome="duplicate").inc()
        response.status_code = status.HTTP_200_OK
    else:
        counter.labels(provider=normalized, outcome="accepted").inc()
    return WebhookAcceptedResponse(event_id=result.event_id, duplicate=result.duplicate)


__all__ = ["SIGNATURE_HEADERS", "extract_identifiers", "router"]

# src/payhook/adapters/schemas/http/envelopes.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""HTTP envelopes (adapters layer).

Purpose:
    Transport-facing response shapes:
      - ErrorEnvelope for every non-2xx response.
      - WebhookAcceptedResponse for the ingest endpoint.

Error codes are upper-snake-case, stable across releases and mirror the
``code`` attribute of the domain exception that produced them:
    - IDEMPOTENCY_KEY_CONFLICT / IDEMPOTENCY_KEY_IN_PROGRESS / IDEMPOTENCY_KEY_INVALID
    - WEBHOOK_SIGNATURE_INVALID / WEBHOOK_PROVIDER_UNKNOWN / WEBHOOK_PAYLOAD_INVALID
"""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = ["ErrorEnvelope", "ErrorObject", "WebhookAcceptedResponse"]


class ErrorObject(BaseModel):
    """Structured error object inside :class:`ErrorEnvelope`."""

    model_config = ConfigDict(
        title="ErrorObject",
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "code": "IDEMPOTENCY_KEY_CONFLICT",
                    "http_status": 409,
                    "message": "Idempotency-Key reused with a different request payload.",
                    "details": {},
                    "trace_id": "req-123",
                }
            ]
        },
    )

    code: str = Field(..., description="Stable machine-readable error code.")
    http_status: int = Field(..., description="Associated HTTP status.")
    message: str = Field(..., description="Human-readable message.")
    details: dict[str, Any] = Field(default_factory=dict, description="Diagnostic payload.")
    trace_id: str | None = Field(default=None, description="Request correlation id.")


class ErrorEnvelope(BaseModel):
    """Canonical error response body: ``{"error": {...}}``."""

    model_config = ConfigDict(title="ErrorEnvelope", extra="forbid")

    error: ErrorObject


class WebhookAcceptedResponse(BaseModel):
    """Body returned by ``POST /v1/webhooks/{provider}``."""

    model_config = ConfigDict(title="WebhookAcceptedResponse", extra="forbid")

    event_id: uuid.UUID = Field(..., description="Stored event identifier.")
    duplicate: bool = Field(..., description="True if the event had already been received.")

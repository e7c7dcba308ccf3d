# src/payhook/domain/exceptions/webhooks.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Webhook delivery exceptions.

Layer:
    domain/exceptions

Notes:
    ``HandlerFailure`` and its subclasses are caught at the dispatch boundary
    and converted into retry bookkeeping; they never escape ``dispatch``.
    Exhausted retries surface as the ``DEAD_LETTERED`` status rather than an
    exception.
"""

from __future__ import annotations

from payhook.domain.exceptions.base import DomainError


class WebhookError(DomainError):
    """Base class for webhook processing failures."""

    code = "WEBHOOK_ERROR"


class InvalidWebhookEvent(WebhookError):
    """Inbound event is missing an identifier or type."""

    code = "WEBHOOK_PAYLOAD_INVALID"


class UnknownProvider(WebhookError):
    """No signature verifier is registered for the provider."""

    code = "WEBHOOK_PROVIDER_UNKNOWN"


class InvalidSignature(WebhookError):
    """Signature verification failed; nothing was persisted."""

    code = "WEBHOOK_SIGNATURE_INVALID"


class HandlerFailure(WebhookError):
    """An event handler raised or otherwise failed."""

    code = "WEBHOOK_HANDLER_FAILED"


class HandlerTimeout(HandlerFailure):
    """An event handler exceeded the dispatch timeout."""

    code = "WEBHOOK_HANDLER_TIMEOUT"


class HandlerNotRegistered(HandlerFailure):
    """No handler is registered for the event type."""

    code = "WEBHOOK_HANDLER_MISSING"


class WebhookEventNotFound(WebhookError):
    """No stored event matches the requested identifier."""

    code = "WEBHOOK_EVENT_NOT_FOUND"


class InvalidStateTransition(WebhookError):
    """The requested lifecycle move is not allowed from the current status."""

    code = "WEBHOOK_INVALID_TRANSITION"


__all__ = [
    "WebhookError",
    "InvalidWebhookEvent",
    "UnknownProvider",
    "InvalidSignature",
    "HandlerFailure",
    "HandlerTimeout",
    "HandlerNotRegistered",
    "WebhookEventNotFound",
    "InvalidStateTransition",
]

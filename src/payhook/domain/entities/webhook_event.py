# src/payhook/domain/entities/webhook_event.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Webhook event entity.

Purpose:
    Represent one inbound provider event together with its delivery state:
    status, retry accounting and the time it is next due.

Layer:
    domain

Notes:
    Instances are immutable. State changes go through the pure transition
    functions in :mod:`payhook.domain.services.webhook_lifecycle`, which
    return a new instance plus the lifecycle events the change emitted.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from payhook.domain.enums.processing import WebhookEventStatus
from payhook.domain.exceptions.webhooks import InvalidWebhookEvent

DEFAULT_MAX_RETRIES = 5


def _require_text(value: str, field_name: str, *, max_length: int) -> str:
    """Strip ``value`` and ensure it is non-empty and within ``max_length``."""
    normalized = (value or "").strip()
    if not normalized:
        raise InvalidWebhookEvent(f"{field_name} must not be empty.", details={"field": field_name})
    if len(normalized) > max_length:
        raise InvalidWebhookEvent(
            f"{field_name} is too long.",
            details={"field": field_name, "max_length": max_length},
        )
    return normalized


@dataclass(frozen=True)
class WebhookEvent:
    """Inbound webhook event and its delivery bookkeeping.

    Args:
        id: Generated identifier.
        provider: Provider name (e.g. ``"stripe"``); half of the dedup key.
        external_event_id: Provider-assigned event id; other half of the dedup key.
        event_type: Provider event type used to resolve a handler.
        payload: Raw payload text exactly as received.
        signature: Signature header value, if the provider sent one.
        status: Current lifecycle status.
        retry_count: Failed attempts so far; never exceeds ``max_retries``.
        max_retries: Attempt budget before dead-lettering.
        next_retry_at: When the event is next due; ``None`` once terminal.
        last_error: Message of the most recent failure.
        processed_at: Completion time when ``SUCCEEDED``.
        created_at: First receipt time.
        updated_at: Time of the last state change.

    Raises:
        InvalidWebhookEvent: If identifiers are blank or retry counters are
            out of range.
    """

    id: uuid.UUID
    provider: str
    external_event_id: str
    event_type: str
    payload: str
    signature: str | None
    status: WebhookEventStatus
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None
    last_error: str | None
    processed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        """Normalize identifiers and validate retry counters."""
        object.__setattr__(
            self, "provider", _require_text(self.provider, "provider", max_length=50).lower()
        )
        object.__setattr__(
            self,
            "external_event_id",
            _require_text(self.external_event_id, "external_event_id", max_length=255),
        )
        object.__setattr__(
            self, "event_type", _require_text(self.event_type, "event_type", max_length=100)
        )
        if self.max_retries < 1:
            raise InvalidWebhookEvent(
                "max_retries must be at least 1.", details={"max_retries": self.max_retries}
            )
        if not 0 <= self.retry_count <= self.max_retries:
            raise InvalidWebhookEvent(
                "retry_count must be between 0 and max_retries.",
                details={"retry_count": self.retry_count, "max_retries": self.max_retries},
            )

    @classmethod
    def received(
        cls,
        *,
        provider: str,
        external_event_id: str,
        event_type: str,
        payload: str,
        signature: str | None,
        now: datetime,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> WebhookEvent:
        """Build a new ``PENDING`` event that is due immediately."""
        return cls(
            id=uuid.uuid4(),
            provider=provider,
            external_event_id=external_event_id,
            event_type=event_type,
            payload=payload,
            signature=signature,
            status=WebhookEventStatus.PENDING,
            retry_count=0,
            max_retries=max_retries,
            next_retry_at=now,
            last_error=None,
            processed_at=None,
            created_at=now,
            updated_at=now,
        )

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.provider, self.external_event_id)

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def is_ready(self, now: datetime) -> bool:
        """Return True if the event may be claimed for dispatch at ``now``."""
        return (
            self.status in WebhookEventStatus.ready_states()
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )

    def payload_json(self) -> Any:
        """Decode the stored payload as JSON."""
        return json.loads(self.payload)


__all__ = ["DEFAULT_MAX_RETRIES", "WebhookEvent"]

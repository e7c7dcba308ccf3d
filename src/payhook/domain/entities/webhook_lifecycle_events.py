# src/payhook/domain/entities/webhook_lifecycle_events.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Lifecycle events emitted by webhook state transitions.

Purpose:
    Describe what a transition did, so callers can publish notifications
    after the corresponding storage write succeeds.

Layer:
    domain

Notes:
    Transition functions return these in a tuple next to the new entity.
    Nothing collects them globally; the caller publishes and drops them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class WebhookLifecycleEvent:
    """Common fields of every lifecycle event."""

    event_id: uuid.UUID
    provider: str
    event_type: str
    occurred_at: datetime

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class WebhookEventReceived(WebhookLifecycleEvent):
    """A new event was stored as ``PENDING``."""


@dataclass(frozen=True)
class WebhookEventSucceeded(WebhookLifecycleEvent):
    """The handler completed and the event is ``SUCCEEDED``."""

    attempts: int = 1


@dataclass(frozen=True)
class WebhookRetryScheduled(WebhookLifecycleEvent):
    """The handler failed and another attempt is scheduled."""

    retry_count: int = 0
    next_retry_at: datetime | None = None
    error: str = ""


@dataclass(frozen=True)
class WebhookEventDeadLettered(WebhookLifecycleEvent):
    """Retries are exhausted; operator intervention is required."""

    retry_count: int = 0
    error: str = ""


@dataclass(frozen=True)
class WebhookEventRedriven(WebhookLifecycleEvent):
    """An operator returned a dead-lettered event to the retry queue."""

    max_retries: int = 0


__all__ = [
    "WebhookLifecycleEvent",
    "WebhookEventReceived",
    "WebhookEventSucceeded",
    "WebhookRetryScheduled",
    "WebhookEventDeadLettered",
    "WebhookEventRedriven",
]

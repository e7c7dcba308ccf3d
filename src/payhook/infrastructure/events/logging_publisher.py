# src/payhook/infrastructure/events/logging_publisher.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Lifecycle event publisher that logs and counts.

Purpose:
    Default :class:`~payhook.application.interfaces.event_publisher.EventPublisher`:
    every lifecycle event becomes a structured log line and a dispatch
    counter increment. Dead-lettered events are logged at ERROR so alerting
    can key on them.

Layer:
    infrastructure/events
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict

from payhook.domain.entities.webhook_lifecycle_events import (
    WebhookEventDeadLettered,
    WebhookEventRedriven,
    WebhookEventSucceeded,
    WebhookLifecycleEvent,
    WebhookRetryScheduled,
)
from payhook.infrastructure.logging.logger import get_json_logger
from payhook.infrastructure.observability.metrics import get_webhook_dispatch_total

log = get_json_logger(__name__)

_OUTCOMES: dict[type[WebhookLifecycleEvent], str] = {
    WebhookEventSucceeded: "succeeded",
    WebhookRetryScheduled: "retry_scheduled",
    WebhookEventDeadLettered: "dead_lettered",
    WebhookEventRedriven: "redriven",
}


class LoggingEventPublisher:
    """Publish lifecycle events to the JSON log and Prometheus."""

    async def publish(self, events: Sequence[WebhookLifecycleEvent]) -> None:
        for event in events:
            fields = {k: v for k, v in asdict(event).items() if v is not None}
            level = logging.ERROR if isinstance(event, WebhookEventDeadLettered) else logging.INFO
            log.log(level, f"webhook.lifecycle.{event.name}", extra={"extra": fields})

            outcome = _OUTCOMES.get(type(event))
            if outcome is not None:
                get_webhook_dispatch_total().labels(
                    event_type=event.event_type, outcome=outcome
                ).inc()


__all__ = ["LoggingEventPublisher"]

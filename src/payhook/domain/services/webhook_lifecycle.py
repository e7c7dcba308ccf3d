# src/payhook/domain/services/webhook_lifecycle.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Webhook delivery state machine.

Purpose:
    Pure transition functions over :class:`WebhookEvent`. Each returns a
    :class:`Transition` holding the new entity and the lifecycle events the
    move emitted.

Layer:
    domain/services

Notes:
    Allowed moves::

        PENDING | FAILED --start_processing--> PROCESSING
        PROCESSING --mark_succeeded--> SUCCEEDED
        PROCESSING --mark_failed--> FAILED | DEAD_LETTERED
        DEAD_LETTERED --redrive--> FAILED

    ``retry_count`` only ever grows and never exceeds ``max_retries``.
    Persisting the new entity (with a status guard) is the caller's job.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime

from payhook.domain.entities.webhook_event import DEFAULT_MAX_RETRIES, WebhookEvent
from payhook.domain.entities.webhook_lifecycle_events import (
    WebhookEventDeadLettered,
    WebhookEventReceived,
    WebhookEventRedriven,
    WebhookEventSucceeded,
    WebhookLifecycleEvent,
    WebhookRetryScheduled,
)
from payhook.domain.enums.processing import WebhookEventStatus
from payhook.domain.exceptions.webhooks import InvalidStateTransition
from payhook.domain.services.retry_backoff import RetryBackoffPolicy

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class Transition:
    """Result of a lifecycle move."""

    event: WebhookEvent
    emitted: tuple[WebhookLifecycleEvent, ...] = ()


def _require_status(event: WebhookEvent, allowed: set[WebhookEventStatus], action: str) -> None:
    if event.status not in allowed:
        raise InvalidStateTransition(
            f"Cannot {action} an event in status {event.status.value}.",
            details={
                "event_id": str(event.id),
                "status": event.status.value,
                "allowed": sorted(s.value for s in allowed),
            },
        )


def receive(
    *,
    provider: str,
    external_event_id: str,
    event_type: str,
    payload: str,
    signature: str | None,
    now: datetime,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Transition:
    """Create a new ``PENDING`` event due at ``now``."""
    event = WebhookEvent.received(
        provider=provider,
        external_event_id=external_event_id,
        event_type=event_type,
        payload=payload,
        signature=signature,
        now=now,
        max_retries=max_retries,
    )
    received = WebhookEventReceived(
        event_id=event.id, provider=event.provider, event_type=event.event_type, occurred_at=now
    )
    return Transition(event=event, emitted=(received,))


def start_processing(event: WebhookEvent, *, now: datetime) -> Transition:
    """Claim a ready event for a dispatch attempt.

    Raises:
        InvalidStateTransition: If the event is not ready at ``now``.
    """
    _require_status(event, set(WebhookEventStatus.ready_states()), "start processing")
    if not event.is_ready(now):
        raise InvalidStateTransition(
            "Event is not due yet.",
            details={
                "event_id": str(event.id),
                "next_retry_at": event.next_retry_at.isoformat() if event.next_retry_at else None,
            },
        )
    return Transition(event=replace(event, status=WebhookEventStatus.PROCESSING, updated_at=now))


def mark_succeeded(event: WebhookEvent, *, now: datetime) -> Transition:
    """Record a successful handler run."""
    _require_status(event, {WebhookEventStatus.PROCESSING}, "complete")
    succeeded = replace(
        event,
        status=WebhookEventStatus.SUCCEEDED,
        next_retry_at=None,
        processed_at=now,
        updated_at=now,
    )
    emitted = WebhookEventSucceeded(
        event_id=event.id,
        provider=event.provider,
        event_type=event.event_type,
        occurred_at=now,
        attempts=event.retry_count + 1,
    )
    return Transition(event=succeeded, emitted=(emitted,))


def mark_failed(
    event: WebhookEvent,
    *,
    error: str,
    now: datetime,
    backoff: RetryBackoffPolicy,
    rng: random.Random | None = None,
) -> Transition:
    """Record a failed handler run and schedule the next attempt.

    The retry count is incremented. Once it reaches ``max_retries`` the event
    is dead-lettered and ``next_retry_at`` is cleared; otherwise it becomes
    ``FAILED`` and is due after the backoff delay.
    """
    _require_status(event, {WebhookEventStatus.PROCESSING}, "fail")
    message = (error or "unknown error")[:MAX_ERROR_LENGTH]
    retry_count = min(event.retry_count + 1, event.max_retries)

    if retry_count >= event.max_retries:
        dead = replace(
            event,
            status=WebhookEventStatus.DEAD_LETTERED,
            retry_count=retry_count,
            next_retry_at=None,
            last_error=message,
            updated_at=now,
        )
        emitted: WebhookLifecycleEvent = WebhookEventDeadLettered(
            event_id=event.id,
            provider=event.provider,
            event_type=event.event_type,
            occurred_at=now,
            retry_count=retry_count,
            error=message,
        )
        return Transition(event=dead, emitted=(emitted,))

    next_retry_at = backoff.next_attempt_at(retry_count, now=now, rng=rng)
    failed = replace(
        event,
        status=WebhookEventStatus.FAILED,
        retry_count=retry_count,
        next_retry_at=next_retry_at,
        last_error=message,
        updated_at=now,
    )
    emitted = WebhookRetryScheduled(
        event_id=event.id,
        provider=event.provider,
        event_type=event.event_type,
        occurred_at=now,
        retry_count=retry_count,
        next_retry_at=next_retry_at,
        error=message,
    )
    return Transition(event=failed, emitted=(emitted,))


def redrive(event: WebhookEvent, *, additional_attempts: int, now: datetime) -> Transition:
    """Return a dead-lettered event to the retry queue.

    ``retry_count`` is kept and the budget is extended instead, so the count
    stays monotonic.

    Raises:
        InvalidStateTransition: If the event is not dead-lettered.
        ValueError: If ``additional_attempts`` is not positive.
    """
    if additional_attempts < 1:
        raise ValueError("additional_attempts must be >= 1")
    _require_status(event, {WebhookEventStatus.DEAD_LETTERED}, "redrive")
    max_retries = event.retry_count + additional_attempts
    redriven = replace(
        event,
        status=WebhookEventStatus.FAILED,
        max_retries=max_retries,
        next_retry_at=now,
        updated_at=now,
    )
    emitted = WebhookEventRedriven(
        event_id=event.id,
        provider=event.provider,
        event_type=event.event_type,
        occurred_at=now,
        max_retries=max_retries,
    )
    return Transition(event=redriven, emitted=(emitted,))


__all__ = [
    "MAX_ERROR_LENGTH",
    "Transition",
    "receive",
    "start_processing",
    "mark_succeeded",
    "mark_failed",
    "redrive",
]

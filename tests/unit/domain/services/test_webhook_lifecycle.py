# tests/unit/domain/services/test_webhook_lifecycle.py
from __future__ import annotations

import random
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from payhook.domain.entities.webhook_event import WebhookEvent
from payhook.domain.entities.webhook_lifecycle_events import (
    WebhookEventDeadLettered,
    WebhookEventReceived,
    WebhookEventRedriven,
    WebhookEventSucceeded,
    WebhookRetryScheduled,
)
from payhook.domain.enums.processing import WebhookEventStatus
from payhook.domain.exceptions.webhooks import InvalidStateTransition
from payhook.domain.services import webhook_lifecycle
from payhook.domain.services.retry_backoff import RetryBackoffPolicy

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
NO_JITTER = RetryBackoffPolicy(base_seconds=1.0, cap_seconds=3600.0, jitter_ratio=0.0)


def _received(max_retries: int = 3) -> WebhookEvent:
    return webhook_lifecycle.receive(
        provider="Stripe",
        external_event_id="evt_1",
        event_type="charge.succeeded",
        payload='{"id":"evt_1"}',
        signature="sig",
        now=T0,
        max_retries=max_retries,
    ).event


def _fail(event: WebhookEvent, now: datetime) -> WebhookEvent:
    processing = webhook_lifecycle.start_processing(event, now=now).event
    return webhook_lifecycle.mark_failed(
        processing, error="boom", now=now, backoff=NO_JITTER
    ).event


def test_receive_creates_pending_event_due_now() -> None:
    transition = webhook_lifecycle.receive(
        provider="Stripe",
        external_event_id=" evt_1 ",
        event_type="charge.succeeded",
        payload="{}",
        signature=None,
        now=T0,
    )
    event = transition.event
    assert event.status is WebhookEventStatus.PENDING
    assert event.provider == "stripe"
    assert event.external_event_id == "evt_1"
    assert event.retry_count == 0
    assert event.next_retry_at == T0
    assert [type(e) for e in transition.emitted] == [WebhookEventReceived]


def test_three_failures_with_budget_of_three_end_dead_lettered() -> None:
    event = _received(max_retries=3)
    seen = [(event.status, event.retry_count)]
    now = T0

    for _ in range(3):
        processing = webhook_lifecycle.start_processing(event, now=now).event
        seen.append((processing.status, processing.retry_count))
        transition = webhook_lifecycle.mark_failed(
            processing, error="boom", now=now, backoff=NO_JITTER
        )
        event = transition.event
        seen.append((event.status, event.retry_count))
        if event.next_retry_at is not None:
            now = event.next_retry_at

    assert seen == [
        (WebhookEventStatus.PENDING, 0),
        (WebhookEventStatus.PROCESSING, 0),
        (WebhookEventStatus.FAILED, 1),
        (WebhookEventStatus.PROCESSING, 1),
        (WebhookEventStatus.FAILED, 2),
        (WebhookEventStatus.PROCESSING, 2),
        (WebhookEventStatus.DEAD_LETTERED, 3),
    ]
    assert event.next_retry_at is None
    assert event.last_error == "boom"
    assert isinstance(transition.emitted[0], WebhookEventDeadLettered)


def test_failure_schedules_retry_in_the_future() -> None:
    processing = webhook_lifecycle.start_processing(_received(), now=T0).event
    transition = webhook_lifecycle.mark_failed(
        processing, error="boom", now=T0, backoff=NO_JITTER
    )
    assert transition.event.status is WebhookEventStatus.FAILED
    assert transition.event.next_retry_at == T0 + timedelta(seconds=2)
    (scheduled,) = transition.emitted
    assert isinstance(scheduled, WebhookRetryScheduled)
    assert scheduled.retry_count == 1


def test_failure_message_is_truncated() -> None:
    processing = webhook_lifecycle.start_processing(_received(), now=T0).event
    failed = webhook_lifecycle.mark_failed(
        processing, error="x" * 5000, now=T0, backoff=NO_JITTER, rng=random.Random(0)
    ).event
    assert failed.last_error is not None
    assert len(failed.last_error) == webhook_lifecycle.MAX_ERROR_LENGTH


def test_success_clears_schedule_and_counts_attempts() -> None:
    failed = _fail(_received(), T0)
    assert failed.next_retry_at is not None
    later = failed.next_retry_at
    processing = webhook_lifecycle.start_processing(failed, now=later).event
    transition = webhook_lifecycle.mark_succeeded(processing, now=later)

    assert transition.event.status is WebhookEventStatus.SUCCEEDED
    assert transition.event.next_retry_at is None
    assert transition.event.processed_at == later
    (succeeded,) = transition.emitted
    assert isinstance(succeeded, WebhookEventSucceeded)
    assert succeeded.attempts == 2


def test_event_not_yet_due_cannot_start() -> None:
    failed = _fail(_received(), T0)
    with pytest.raises(InvalidStateTransition):
        webhook_lifecycle.start_processing(failed, now=T0)


@pytest.mark.parametrize(
    "status",
    [
        WebhookEventStatus.PROCESSING,
        WebhookEventStatus.SUCCEEDED,
        WebhookEventStatus.DEAD_LETTERED,
    ],
)
def test_only_ready_states_can_start(status: WebhookEventStatus) -> None:
    event = replace(_received(), status=status)
    with pytest.raises(InvalidStateTransition) as exc_info:
        webhook_lifecycle.start_processing(event, now=T0)
    assert exc_info.value.code == "WEBHOOK_INVALID_TRANSITION"


def test_completion_requires_processing() -> None:
    with pytest.raises(InvalidStateTransition):
        webhook_lifecycle.mark_succeeded(_received(), now=T0)
    with pytest.raises(InvalidStateTransition):
        webhook_lifecycle.mark_failed(_received(), error="x", now=T0, backoff=NO_JITTER)


def test_dead_letter_is_terminal_for_dispatch() -> None:
    event = _received(max_retries=1)
    dead = _fail(event, T0)
    assert dead.status is WebhookEventStatus.DEAD_LETTERED
    assert dead.status.is_terminal
    assert not dead.is_ready(T0 + timedelta(days=365))


def test_redrive_extends_budget_without_resetting_count() -> None:
    dead = _fail(_received(max_retries=1), T0)
    later = T0 + timedelta(hours=1)
    transition = webhook_lifecycle.redrive(dead, additional_attempts=2, now=later)

    assert transition.event.status is WebhookEventStatus.FAILED
    assert transition.event.retry_count == 1
    assert transition.event.max_retries == 3
    assert transition.event.is_ready(later)
    (redriven,) = transition.emitted
    assert isinstance(redriven, WebhookEventRedriven)
    assert redriven.max_retries == 3


def test_redrive_rejects_live_events_and_empty_budgets() -> None:
    with pytest.raises(InvalidStateTransition):
        webhook_lifecycle.redrive(_received(), additional_attempts=1, now=T0)
    dead = _fail(_received(max_retries=1), T0)
    with pytest.raises(ValueError):
        webhook_lifecycle.redrive(dead, additional_attempts=0, now=T0)

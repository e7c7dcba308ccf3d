# tests/unit/application/use_cases/test_webhook_processor.py
"""Unit tests for WebhookProcessor over the in-memory event store."""

from __future__ import annotations

import asyncio
import uuid
import json
from dataclasses import replace
from datetime import timedelta

import pytest

from payhook.application.use_cases.webhook_processor import DispatchOutcome, WebhookProcessor
from payhook.domain.entities.webhook_event import WebhookEvent
from payhook.domain.enums.processing import WebhookEventStatus
from payhook.domain.exceptions.webhooks import (
    InvalidSignature,
    InvalidStateTransition,
    InvalidWebhookEvent,
    UnknownProvider,
    WebhookEventNotFound,
)

S = WebhookEventStatus


def _body(event_id: str = "evt_1", event_type: str = "invoice.paid") -> bytes:
    return json.dumps({"id": event_id, "type": event_type}).encode()


async def _ingest(processor: WebhookProcessor, sign_payload, event_id: str = "evt_1"):
    body = _body(event_id)
    return await processor.ingest(
        provider="acme",
        external_event_id=event_id,
        event_type="invoice.paid",
        payload=body,
        signature=sign_payload(body),
    )


def _seed(event_store, clock, *, external_id: str, **overrides) -> WebhookEvent:
    event = WebhookEvent.received(
        provider="acme",
        external_event_id=external_id,
        event_type="invoice.paid",
        payload="{}",
        signature=None,
        now=clock.now(),
        max_retries=3,
    )
    return event_store.put(replace(event, **overrides))


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_ingest_stores_a_pending_event(processor, event_store, publisher, sign_payload):
    result = await _ingest(processor, sign_payload)

    assert result.duplicate is False
    stored = event_store.events[result.event_id]
    assert stored.status is S.PENDING
    assert stored.retry_count == 0
    assert stored.max_retries == 3
    assert json.loads(stored.payload) == {"id": "evt_1", "type": "invoice.paid"}
    assert publisher.names == ["WebhookEventReceived"]


@pytest.mark.anyio
async def test_duplicate_delivery_is_short_circuited(processor, event_store, sign_payload):
    first = await _ingest(processor, sign_payload)
    second = await _ingest(processor, sign_payload)

    assert second.duplicate is True
    assert second.event_id == first.event_id
    assert len(event_store.events) == 1


@pytest.mark.anyio
async def test_concurrent_duplicate_deliveries_store_one_event(
    processor, event_store, sign_payload
):
    results = await asyncio.gather(*(_ingest(processor, sign_payload) for _ in range(5)))

    assert len(event_store.events) == 1
    assert sum(not r.duplicate for r in results) == 1
    assert {r.event_id for r in results} == set(event_store.events)


@pytest.mark.anyio
@pytest.mark.parametrize("signature", ["deadbeef", "", None])
async def test_bad_signature_writes_nothing(processor, event_store, signature):
    with pytest.raises(InvalidSignature) as exc_info:
        await processor.ingest(
            provider="acme",
            external_event_id="evt_1",
            event_type="invoice.paid",
            payload=_body(),
            signature=signature,
        )
    assert exc_info.value.code == "WEBHOOK_SIGNATURE_INVALID"
    assert event_store.events == {}


@pytest.mark.anyio
async def test_provider_without_secret_fails_closed(processor, event_store, sign_payload):
    body = _body()
    with pytest.raises(InvalidSignature):
        await processor.ingest(
            provider="unconfigured",
            external_event_id="evt_1",
            event_type="invoice.paid",
            payload=body,
            signature=sign_payload(body),
        )
    assert event_store.events == {}


@pytest.mark.anyio
async def test_unknown_provider_is_rejected(processor, event_store):
    with pytest.raises(UnknownProvider):
        await processor.ingest(
            provider="nobody",
            external_event_id="evt_1",
            event_type="x",
            payload=b"{}",
            signature="sig",
        )
    assert event_store.events == {}


@pytest.mark.anyio
async def test_blank_identifiers_and_binary_payloads_are_invalid(
    processor, event_store, sign_payload
):
    body = _body()
    with pytest.raises(InvalidWebhookEvent):
        await processor.ingest(
            provider="acme",
            external_event_id=" ",
            event_type="invoice.paid",
            payload=body,
            signature=sign_payload(body),
        )
    binary = b"\xff\xfe\x00"
    with pytest.raises(InvalidWebhookEvent):
        await processor.ingest(
            provider="acme",
            external_event_id="evt_2",
            event_type="invoice.paid",
            payload=binary,
            signature=sign_payload(binary),
        )
    assert event_store.events == {}


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_successful_dispatch(processor, event_store, handlers, publisher, sign_payload):
    seen: list[WebhookEvent] = []

    @handlers.on("invoice.paid")
    async def handle(event: WebhookEvent) -> None:
        seen.append(event)

    result = await _ingest(processor, sign_payload)
    report = await processor.dispatch_ready_batch()

    assert report.as_dict()["SUCCEEDED"] == 1
    assert [e.status for e in seen] == [S.PROCESSING]
    stored = event_store.events[result.event_id]
    assert stored.status is S.SUCCEEDED
    assert stored.next_retry_at is None
    assert stored.processed_at is not None
    assert publisher.names[-1] == "WebhookEventSucceeded"


@pytest.mark.anyio
async def test_three_failures_dead_letter_an_event_with_budget_three(
    processor, event_store, handlers, clock, publisher, sign_payload
):
    @handlers.on("invoice.paid")
    async def handle(event: WebhookEvent) -> None:
        raise RuntimeError("downstream unavailable")

    result = await _ingest(processor, sign_payload)
    outcomes = []
    for _ in range(3):
        event = event_store.events[result.event_id]
        if event.next_retry_at is not None and event.next_retry_at > clock.now():
            clock.current = event.next_retry_at
        outcomes.append(await processor.dispatch(event))

    assert outcomes == [
        DispatchOutcome.RETRY_SCHEDULED,
        DispatchOutcome.RETRY_SCHEDULED,
        DispatchOutcome.DEAD_LETTERED,
    ]
    assert event_store.history[result.event_id] == [
        (S.PENDING, 0),
        (S.PROCESSING, 0),
        (S.FAILED, 1),
        (S.PROCESSING, 1),
        (S.FAILED, 2),
        (S.PROCESSING, 2),
        (S.DEAD_LETTERED, 3),
    ]
    dead = event_store.events[result.event_id]
    assert dead.next_retry_at is None
    assert dead.last_error == "RuntimeError: downstream unavailable"
    assert "WebhookEventDeadLettered" in publisher.names

    clock.advance(86_400)
    assert await processor.query_ready() == []
    assert await processor.dispatch(dead) is DispatchOutcome.SKIPPED


@pytest.mark.anyio
async def test_retry_count_never_decreases_or_exceeds_budget(
    processor, event_store, handlers, clock, sign_payload
):
    @handlers.on("invoice.paid")
    async def handle(event: WebhookEvent) -> None:
        raise ValueError("nope")

    result = await _ingest(processor, sign_payload)
    for _ in range(6):
        clock.advance(3600)
        await processor.dispatch_ready_batch()

    counts = [count for _, count in event_store.history[result.event_id]]
    assert counts == sorted(counts)
    assert max(counts) == 3


@pytest.mark.anyio
async def test_outdated_snapshot_loses_the_claim(
    processor, event_store, handlers, clock, sign_payload
):
    @handlers.on("invoice.paid")
    async def handle(event: WebhookEvent) -> None:
        raise RuntimeError("still down")

    result = await _ingest(processor, sign_payload)
    await processor.dispatch(event_store.events[result.event_id])
    clock.advance(3600)
    (snapshot,) = await processor.query_ready()
    assert snapshot.retry_count == 1

    await processor.dispatch(event_store.events[result.event_id])
    clock.advance(3600)

    assert await processor.dispatch(snapshot) is DispatchOutcome.SKIPPED
    stored = event_store.events[result.event_id]
    assert (stored.status, stored.retry_count) == (S.FAILED, 2)
    counts = [count for _, count in event_store.history[result.event_id]]
    assert counts == sorted(counts)


@pytest.mark.anyio
async def test_outdated_snapshot_cannot_undo_a_redrive(
    processor, event_store, handlers, clock, sign_payload
):
    @handlers.on("invoice.paid")
    async def handle(event: WebhookEvent) -> None:
        raise RuntimeError("still down")

    result = await _ingest(processor, sign_payload)
    await processor.dispatch(event_store.events[result.event_id])
    clock.advance(3600)
    (snapshot,) = await processor.query_ready()
    for _ in range(2):
        await processor.dispatch(event_store.events[result.event_id])
        clock.advance(3600)
    assert event_store.events[result.event_id].status is S.DEAD_LETTERED
    await processor.redrive(result.event_id, additional_attempts=2)

    assert await processor.dispatch(snapshot) is DispatchOutcome.SKIPPED
    stored = event_store.events[result.event_id]
    assert (stored.status, stored.retry_count, stored.max_retries) == (S.FAILED, 3, 5)


@pytest.mark.anyio
async def test_ready_batch_only_returns_due_pending_or_failed(processor, event_store, clock):
    now = clock.now()
    due_pending = _seed(event_store, clock, external_id="a", next_retry_at=now - timedelta(1))
    due_failed = _seed(
        event_store, clock, external_id="b", status=S.FAILED, retry_count=1, next_retry_at=now
    )
    _seed(event_store, clock, external_id="c", next_retry_at=now + timedelta(seconds=1))
    _seed(event_store, clock, external_id="d", status=S.PROCESSING)
    _seed(event_store, clock, external_id="e", status=S.SUCCEEDED, next_retry_at=None)
    _seed(event_store, clock, external_id="f", status=S.DEAD_LETTERED, next_retry_at=None)

    ready = await processor.query_ready()

    assert [e.id for e in ready] == [due_pending.id, due_failed.id]
    assert all(e.next_retry_at <= now for e in ready)
    assert len(await processor.query_ready(limit=1)) == 1
    assert await processor.query_ready(limit=0) == []


@pytest.mark.anyio
async def test_concurrent_workers_run_the_handler_once(
    processor, event_store, handlers, sign_payload
):
    calls = 0

    @handlers.on("invoice.paid")
    async def handle(event: WebhookEvent) -> None:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)

    result = await _ingest(processor, sign_payload)
    event = event_store.events[result.event_id]
    outcomes = await asyncio.gather(*(processor.dispatch(event) for _ in range(4)))

    assert calls == 1
    assert sorted(outcomes) == sorted(
        [DispatchOutcome.SUCCEEDED] + [DispatchOutcome.SKIPPED] * 3
    )


@pytest.mark.anyio
async def test_handler_timeout_counts_as_failure(processor, event_store, handlers, sign_payload):
    @handlers.on("invoice.paid")
    async def handle(event: WebhookEvent) -> None:
        await asyncio.sleep(5)

    result = await _ingest(processor, sign_payload)
    outcome = await processor.dispatch(event_store.events[result.event_id])

    stored = event_store.events[result.event_id]
    assert outcome is DispatchOutcome.RETRY_SCHEDULED
    assert stored.status is S.FAILED
    assert stored.last_error is not None
    assert stored.last_error.startswith("WEBHOOK_HANDLER_TIMEOUT")


@pytest.mark.anyio
async def test_missing_handler_counts_as_failure(processor, event_store, sign_payload):
    result = await _ingest(processor, sign_payload)
    outcome = await processor.dispatch(event_store.events[result.event_id])

    stored = event_store.events[result.event_id]
    assert outcome is DispatchOutcome.RETRY_SCHEDULED
    assert stored.retry_count == 1
    assert stored.last_error is not None
    assert stored.last_error.startswith("WEBHOOK_HANDLER_MISSING")


@pytest.mark.anyio
async def test_event_not_yet_due_is_skipped(processor, event_store, clock):
    event = _seed(
        event_store, clock, external_id="later", next_retry_at=clock.now() + timedelta(minutes=5)
    )
    assert await processor.dispatch(event) is DispatchOutcome.SKIPPED
    assert event_store.events[event.id].status is S.PENDING


@pytest.mark.anyio
async def test_publisher_failure_does_not_undo_state(
    processor, event_store, handlers, publisher, sign_payload
):
    @handlers.on("invoice.paid")
    async def handle(event: WebhookEvent) -> None:
        return None

    result = await _ingest(processor, sign_payload)

    async def broken(events) -> None:
        raise ConnectionError("bus down")

    publisher.publish = broken
    outcome = await processor.dispatch(event_store.events[result.event_id])

    assert outcome is DispatchOutcome.SUCCEEDED
    assert event_store.events[result.event_id].status is S.SUCCEEDED


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_reaper_fails_stale_processing_events(processor, event_store, clock, publisher):
    old = _seed(
        event_store,
        clock,
        external_id="stuck",
        status=S.PROCESSING,
        updated_at=clock.now() - timedelta(minutes=11),
    )
    fresh = _seed(event_store, clock, external_id="busy", status=S.PROCESSING)

    assert await processor.reap_stale() == 1

    reaped = event_store.events[old.id]
    assert reaped.status is S.FAILED
    assert reaped.retry_count == 1
    assert reaped.next_retry_at is not None and reaped.next_retry_at > clock.now()
    assert event_store.events[fresh.id].status is S.PROCESSING
    assert publisher.names == ["WebhookRetryScheduled"]


@pytest.mark.anyio
async def test_reaper_dead_letters_when_budget_is_spent(processor, event_store, clock):
    event = _seed(
        event_store,
        clock,
        external_id="stuck",
        status=S.PROCESSING,
        retry_count=2,
        updated_at=clock.now() - timedelta(hours=1),
    )
    await processor.reap_stale()
    assert event_store.events[event.id].status is S.DEAD_LETTERED


@pytest.mark.anyio
async def test_redrive_returns_dead_letter_to_the_queue(processor, event_store, clock):
    dead = _seed(
        event_store,
        clock,
        external_id="dead",
        status=S.DEAD_LETTERED,
        retry_count=3,
        next_retry_at=None,
        last_error="boom",
    )
    assert [e.id for e in await processor.list_dead_letters()] == [dead.id]

    clock.advance(60)
    redriven = await processor.redrive(dead.id)

    assert redriven.status is S.FAILED
    assert redriven.retry_count == 3
    assert redriven.max_retries == 5
    assert [e.id for e in await processor.query_ready()] == [dead.id]
    assert await processor.list_dead_letters() == []


@pytest.mark.anyio
async def test_redrive_errors(processor, event_store, clock):
    with pytest.raises(WebhookEventNotFound):
        await processor.redrive(uuid.uuid4())

    live = _seed(event_store, clock, external_id="live")
    with pytest.raises(InvalidStateTransition):
        await processor.redrive(live.id, additional_attempts=1)

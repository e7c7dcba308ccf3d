# src/payhook/application/use_cases/webhook_processor.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Use case: webhook ingestion, dispatch and retry scheduling.

Purpose:
    Accept signed provider events exactly once per dedup key, then drive each
    stored event through the delivery state machine with bounded,
    exponentially backed-off retries.

Layer:
    application/use_cases

Notes:
    - Signature verification happens before any storage access, so forged
      payloads never create rows.
    - Claims are compare-and-set on status and ``(retry_count, max_retries)``
      in storage; two workers that pick the same event cannot both run its
      handler, and a worker holding an outdated snapshot loses the claim
      instead of writing older counters back.
    - Handler errors and timeouts never escape :meth:`WebhookProcessor.dispatch`;
      they become retry bookkeeping. Cancellation does escape and leaves the
      event ``PROCESSING`` until :meth:`WebhookProcessor.reap_stale` reclaims it.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from payhook.application.interfaces.clock import Clock
from payhook.application.interfaces.event_publisher import EventPublisher
from payhook.application.services.handler_registry import HandlerRegistry
from payhook.application.services.signature_registry import SignatureVerifierRegistry
from payhook.domain.entities.webhook_event import DEFAULT_MAX_RETRIES, WebhookEvent
from payhook.domain.entities.webhook_lifecycle_events import WebhookLifecycleEvent
from payhook.domain.enums.processing import WebhookEventStatus
from payhook.domain.exceptions.base import DomainError
from payhook.domain.exceptions.webhooks import (
    HandlerNotRegistered,
    HandlerTimeout,
    InvalidStateTransition,
    InvalidWebhookEvent,
    WebhookError,
    WebhookEventNotFound,
)
from payhook.domain.interfaces.repositories.webhook_event_store import WebhookEventStore
from payhook.domain.services import webhook_lifecycle
from payhook.domain.services.retry_backoff import RetryBackoffPolicy

logger = logging.getLogger(__name__)

STALE_PROCESSING_ERROR = "Processing lease expired before the handler finished."


class DispatchOutcome(str, Enum):
    """Result of a single dispatch attempt."""

    SUCCEEDED = "SUCCEEDED"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    DEAD_LETTERED = "DEAD_LETTERED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class IngestResult:
    """Outcome of :meth:`WebhookProcessor.ingest`.

    ``duplicate`` is True when the dedup key was already stored; nothing was
    written and nothing will be re-dispatched.
    """

    event_id: uuid.UUID
    duplicate: bool


@dataclass
class BatchReport:
    """Per-outcome counts for one ready batch."""

    outcomes: Counter[DispatchOutcome] = field(default_factory=Counter)

    @property
    def total(self) -> int:
        return sum(self.outcomes.values())

    def as_dict(self) -> dict[str, int]:
        return {outcome.value: self.outcomes.get(outcome, 0) for outcome in DispatchOutcome}


def _describe(exc: BaseException) -> str:
    """Render an exception for ``last_error``."""
    message = str(exc) or type(exc).__name__
    if isinstance(exc, DomainError):
        return f"{exc.code}: {message}"
    return f"{type(exc).__name__}: {message}"


class WebhookProcessor:
    """Webhook delivery processor.

    Args:
        store: Webhook event storage port.
        verifiers: Per-provider signature verification.
        handlers: Event-type handler registry.
        clock: Time source.
        backoff: Retry delay policy.
        publisher: Optional sink for lifecycle events.
        max_retries: Attempt budget given to newly ingested events.
        handler_timeout_seconds: Per-attempt handler timeout.
        batch_size: Default ready-batch size.
        stale_after_seconds: Age after which a ``PROCESSING`` event is reaped.
        redrive_attempts: Default extra attempts granted by :meth:`redrive`.
        rng: Optional random source for backoff jitter.
    """

    def __init__(
        self,
        *,
        store: WebhookEventStore,
        verifiers: SignatureVerifierRegistry,
        handlers: HandlerRegistry,
        clock: Clock,
        backoff: RetryBackoffPolicy | None = None,
        publisher: EventPublisher | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        handler_timeout_seconds: float = 30.0,
        batch_size: int = 10,
        stale_after_seconds: float = 900.0,
        redrive_attempts: int = 3,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._verifiers = verifiers
        self._handlers = handlers
        self._clock = clock
        self._backoff = backoff or RetryBackoffPolicy()
        self._publisher = publisher
        self._max_retries = max_retries
        self._handler_timeout_seconds = handler_timeout_seconds
        self._batch_size = batch_size
        self._stale_after_seconds = stale_after_seconds
        self._redrive_attempts = redrive_attempts
        self._rng = rng

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        *,
        provider: str,
        external_event_id: str,
        event_type: str,
        payload: bytes | str,
        signature: str | None,
    ) -> IngestResult:
        """Verify and store an inbound event once per dedup key.

        Args:
            provider: Provider name; selects the verification scheme.
            external_event_id: Provider-assigned event id.
            event_type: Provider event type.
            payload: Raw request body, exactly as signed.
            signature: Signature header value.

        Returns:
            IngestResult: The stored event id and whether it was a duplicate.

        Raises:
            UnknownProvider: If no verifier is registered for ``provider``.
            InvalidSignature: If verification fails; nothing is stored.
            InvalidWebhookEvent: If identifiers are blank or the payload is
                not UTF-8.
        """
        raw = payload.encode("utf-8") if isinstance(payload, str) else payload
        self._verifiers.verify(provider, raw, signature)

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidWebhookEvent("Webhook payload must be UTF-8 text.") from exc

        transition = webhook_lifecycle.receive(
            provider=provider,
            external_event_id=external_event_id,
            event_type=event_type,
            payload=text,
            signature=signature,
            now=self._clock.now(),
            max_retries=self._max_retries,
        )
        event = transition.event

        existing = await self._store.get_by_key(event.provider, event.external_event_id)
        if existing is None and await self._store.insert_if_absent(event):
            logger.info(
                "webhook.ingest.accepted",
                extra={
                    "extra": {
                        "event_id": str(event.id),
                        "provider": event.provider,
                        "external_event_id": event.external_event_id,
                        "event_type": event.event_type,
                    }
                },
            )
            await self._publish(transition.emitted)
            return IngestResult(event_id=event.id, duplicate=False)

        if existing is None:
            existing = await self._store.get_by_key(event.provider, event.external_event_id)
        if existing is None:
            raise WebhookError(
                "Webhook event insert conflicted but no stored event was found.",
                details={"provider": event.provider, "external_event_id": event.external_event_id},
            )

        logger.info(
            "webhook.ingest.duplicate",
            extra={
                "extra": {
                    "event_id": str(existing.id),
                    "provider": existing.provider,
                    "external_event_id": existing.external_event_id,
                    "status": existing.status.value,
                }
            },
        )
        return IngestResult(event_id=existing.id, duplicate=True)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def query_ready(self, limit: int | None = None) -> Sequence[WebhookEvent]:
        """Return due ``PENDING``/``FAILED`` events, oldest-due first."""
        size = self._batch_size if limit is None else limit
        if size < 1:
            return []
        return await self._store.query_ready(now=self._clock.now(), limit=size)

    async def dispatch(self, event: WebhookEvent) -> DispatchOutcome:
        """Run one delivery attempt for ``event``.

        Returns:
            DispatchOutcome: ``SKIPPED`` if the event was not ready or another
            worker claimed it first; otherwise the resulting state.
        """
        now = self._clock.now()
        try:
            claim = webhook_lifecycle.start_processing(event, now=now)
        except InvalidStateTransition as exc:
            logger.debug(
                "webhook.dispatch.not_ready",
                extra={"extra": {"event_id": str(event.id), "reason": exc.message}},
            )
            return DispatchOutcome.SKIPPED

        claimed = await self._store.compare_and_set_status(
            event.id,
            expected={event.status},
            new=WebhookEventStatus.PROCESSING,
            now=now,
            due_by=now,
            expected_attempts=_attempts(event),
        )
        if not claimed:
            logger.info(
                "webhook.dispatch.claim_lost",
                extra={"extra": {"event_id": str(event.id)}},
            )
            return DispatchOutcome.SKIPPED

        processing = claim.event
        try:
            await self._invoke_handler(processing)
        except Exception as exc:  # noqa: BLE001 - handler failures become retry state
            error = _describe(exc)
            transition = webhook_lifecycle.mark_failed(
                processing,
                error=error,
                now=self._clock.now(),
                backoff=self._backoff,
                rng=self._rng,
            )
            logger.warning(
                "webhook.dispatch.failed",
                extra={
                    "extra": {
                        "event_id": str(event.id),
                        "event_type": event.event_type,
                        "retry_count": transition.event.retry_count,
                        "max_retries": transition.event.max_retries,
                        "status": transition.event.status.value,
                        "error": error,
                    }
                },
            )
        else:
            transition = webhook_lifecycle.mark_succeeded(processing, now=self._clock.now())
            logger.info(
                "webhook.dispatch.succeeded",
                extra={"extra": {"event_id": str(event.id), "event_type": event.event_type}},
            )

        persisted = await self._store.update(
            transition.event,
            expected=WebhookEventStatus.PROCESSING,
            expected_attempts=_attempts(processing),
        )
        if not persisted:
            logger.warning(
                "webhook.dispatch.stale_write",
                extra={"extra": {"event_id": str(event.id)}},
            )
            return DispatchOutcome.SKIPPED

        await self._publish(transition.emitted)
        return _outcome_for(transition.event.status)

    async def dispatch_ready_batch(self, limit: int | None = None) -> BatchReport:
        """Query one ready batch and dispatch each event in order."""
        report = BatchReport()
        for event in await self.query_ready(limit):
            report.outcomes[await self.dispatch(event)] += 1
        if report.total:
            logger.info("webhook.batch.completed", extra={"extra": report.as_dict()})
        return report

    async def _invoke_handler(self, event: WebhookEvent) -> None:
        handler = self._handlers.resolve(event.event_type)
        if handler is None:
            raise HandlerNotRegistered(
                f"No handler registered for event type {event.event_type!r}.",
                details={"event_type": event.event_type},
            )
        try:
            await asyncio.wait_for(handler(event), timeout=self._handler_timeout_seconds)
        except TimeoutError as exc:
            raise HandlerTimeout(
                f"Handler exceeded {self._handler_timeout_seconds:g}s timeout.",
                details={"event_type": event.event_type},
            ) from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def reap_stale(self, *, limit: int = 100) -> int:
        """Fail events stuck in ``PROCESSING`` past the stale timeout.

        Each reaped event has its retry count incremented exactly as if the
        handler had failed, so a crashing handler still ends up dead-lettered.

        Returns:
            int: Number of events reclaimed.
        """
        now = self._clock.now()
        cutoff = now - timedelta(seconds=self._stale_after_seconds)
        reaped = 0
        for event in await self._store.find_stale_processing(updated_before=cutoff, limit=limit):
            transition = webhook_lifecycle.mark_failed(
                event,
                error=STALE_PROCESSING_ERROR,
                now=now,
                backoff=self._backoff,
                rng=self._rng,
            )
            if not await self._store.update(
                transition.event,
                expected=WebhookEventStatus.PROCESSING,
                expected_attempts=_attempts(event),
            ):
                continue
            reaped += 1
            logger.warning(
                "webhook.reaper.reclaimed",
                extra={
                    "extra": {
                        "event_id": str(event.id),
                        "status": transition.event.status.value,
                        "retry_count": transition.event.retry_count,
                    }
                },
            )
            await self._publish(transition.emitted)
        return reaped

    async def list_dead_letters(self, limit: int = 100) -> Sequence[WebhookEvent]:
        return await self._store.list_by_status(WebhookEventStatus.DEAD_LETTERED, limit=limit)

    async def redrive(
        self, event_id: uuid.UUID, *, additional_attempts: int | None = None
    ) -> WebhookEvent:
        """Return a dead-lettered event to the retry queue, due now.

        Raises:
            WebhookEventNotFound: If no event has ``event_id``.
            InvalidStateTransition: If the event is not dead-lettered, or
                changed while being redriven.
        """
        event = await self._store.get_by_id(event_id)
        if event is None:
            raise WebhookEventNotFound(
                "Webhook event not found.", details={"event_id": str(event_id)}
            )

        transition = webhook_lifecycle.redrive(
            event,
            additional_attempts=additional_attempts or self._redrive_attempts,
            now=self._clock.now(),
        )
        if not await self._store.update(
            transition.event,
            expected=WebhookEventStatus.DEAD_LETTERED,
            expected_attempts=_attempts(event),
        ):
            raise InvalidStateTransition(
                "Webhook event changed while being redriven.",
                details={"event_id": str(event_id)},
            )

        logger.info(
            "webhook.redrive",
            extra={
                "extra": {
                    "event_id": str(event_id),
                    "max_retries": transition.event.max_retries,
                }
            },
        )
        await self._publish(transition.emitted)
        return transition.event

    async def _publish(self, events: Sequence[WebhookLifecycleEvent]) -> None:
        if self._publisher is None or not events:
            return
        try:
            await self._publisher.publish(events)
        except Exception:
            # Best effort once the state write is committed.
            logger.exception(
                "webhook.publish.failed",
                extra={"extra": {"events": [e.name for e in events]}},
            )


def _attempts(event: WebhookEvent) -> tuple[int, int]:
    """Row version a conditional write is pinned to."""
    return (event.retry_count, event.max_retries)


def _outcome_for(status: WebhookEventStatus) -> DispatchOutcome:
    if status is WebhookEventStatus.SUCCEEDED:
        return DispatchOutcome.SUCCEEDED
    if status is WebhookEventStatus.DEAD_LETTERED:
        return DispatchOutcome.DEAD_LETTERED
    return DispatchOutcome.RETRY_SCHEDULED


__all__ = [
    "BatchReport",
    "DispatchOutcome",
    "IngestResult",
    "STALE_PROCESSING_ERROR",
    "WebhookProcessor",
]

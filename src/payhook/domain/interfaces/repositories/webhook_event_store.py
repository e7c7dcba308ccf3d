# src/payhook/domain/interfaces/repositories/webhook_event_store.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Webhook event storage port.

Purpose:
    Persistence contract consumed by the webhook delivery processor.

Layer:
    domain/interfaces/repositories

Notes:
    Claims and state writes are compare-and-set on ``status`` and, when
    ``expected_attempts`` is given, on ``(retry_count, max_retries)``. Every
    failure, reap and redrive changes that pair, so it serves as the row
    version. The storage layer is the only serialization point between
    concurrent workers.
    Implementations must support a unique constraint on
    ``(provider, external_event_id)`` and an index on
    ``(status, next_retry_at)``.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection, Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from payhook.domain.entities.webhook_event import WebhookEvent
from payhook.domain.enums.processing import WebhookEventStatus


@runtime_checkable
class WebhookEventStore(Protocol):
    """Storage port for webhook events."""

    async def get_by_id(self, event_id: uuid.UUID) -> WebhookEvent | None:
        raise NotImplementedError

    async def get_by_key(self, provider: str, external_event_id: str) -> WebhookEvent | None:
        """Return the event stored under the dedup key, if any."""
        raise NotImplementedError

    async def insert_if_absent(self, event: WebhookEvent) -> bool:
        """Insert ``event`` unless its dedup key already exists.

        Returns:
            True if the row was inserted.
        """
        raise NotImplementedError

    async def compare_and_set_status(
        self,
        event_id: uuid.UUID,
        *,
        expected: Collection[WebhookEventStatus],
        new: WebhookEventStatus,
        now: datetime,
        due_by: datetime | None = None,
        expected_attempts: tuple[int, int] | None = None,
    ) -> bool:
        """Set ``status`` to ``new`` only if it is currently in ``expected``.

        Args:
            event_id: Event to update.
            expected: Statuses the row must currently hold.
            new: Status to write.
            now: Written to ``updated_at``.
            due_by: When given, additionally require ``next_retry_at <= due_by``.
            expected_attempts: When given, additionally require the stored
                ``(retry_count, max_retries)`` to equal it.

        Returns:
            True if the row was updated.
        """
        raise NotImplementedError

    async def update(
        self,
        event: WebhookEvent,
        *,
        expected: WebhookEventStatus,
        expected_attempts: tuple[int, int] | None = None,
    ) -> bool:
        """Persist the mutable fields of ``event`` if the row is still ``expected``.

        ``expected_attempts`` guards the write the same way as in
        :meth:`compare_and_set_status`.

        Returns:
            True if the row was updated.
        """
        raise NotImplementedError

    async def query_ready(self, *, now: datetime, limit: int) -> Sequence[WebhookEvent]:
        """Return ready events ordered by ``next_retry_at`` ascending.

        Ready means status ``PENDING`` or ``FAILED`` and
        ``next_retry_at <= now``.
        """
        raise NotImplementedError

    async def list_by_status(
        self, status: WebhookEventStatus, *, limit: int
    ) -> Sequence[WebhookEvent]:
        """Return events in ``status``, most recently updated first."""
        raise NotImplementedError

    async def find_stale_processing(
        self, *, updated_before: datetime, limit: int
    ) -> Sequence[WebhookEvent]:
        """Return ``PROCESSING`` events last updated before ``updated_before``."""
        raise NotImplementedError


__all__ = ["WebhookEventStore"]

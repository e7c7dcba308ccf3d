# src/payhook/adapters/repositories/webhook_event_repository.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""SQLAlchemy implementation of the webhook event storage port.

Layer:
    adapters/repositories

Notes:
    * Dedup relies on ``uq_webhook_events_provider_external_event_id`` via
      ``ON CONFLICT DO NOTHING``.
    * Status changes are ``UPDATE ... WHERE id = :id AND status IN (...)``,
      optionally pinned to ``(retry_count, max_retries)``; success is a row
      count of one.
    * The ready query walks ``ix_webhook_events_status_next_retry_at``.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection, Sequence
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.sql.dml import Update

from payhook.adapters.repositories.base_repository import BaseRepository
from payhook.domain.entities.webhook_event import WebhookEvent
from payhook.domain.enums.processing import WebhookEventStatus
from payhook.infrastructure.database.models.webhook_event import WebhookEventRow

_READY_STATES = tuple(s.value for s in WebhookEventStatus.ready_states())


def _with_attempts(stmt: Update, expected_attempts: tuple[int, int] | None) -> Update:
    if expected_attempts is None:
        return stmt
    retry_count, max_retries = expected_attempts
    return stmt.where(
        WebhookEventRow.retry_count == retry_count,
        WebhookEventRow.max_retries == max_retries,
    )


class SqlAlchemyWebhookEventRepository(BaseRepository[WebhookEventRow]):
    """Webhook events stored in ``webhook_events``."""

    async def get_by_id(self, event_id: uuid.UUID) -> WebhookEvent | None:
        stmt = select(WebhookEventRow).where(WebhookEventRow.id == event_id)
        row = await self.fetch_optional(stmt)
        return None if row is None else self._to_entity(row)

    async def get_by_key(self, provider: str, external_event_id: str) -> WebhookEvent | None:
        row = await self.fetch_optional(
            select(WebhookEventRow).where(
                WebhookEventRow.provider == provider,
                WebhookEventRow.external_event_id == external_event_id,
            )
        )
        return None if row is None else self._to_entity(row)

    async def insert_if_absent(self, event: WebhookEvent) -> bool:
        stmt = (
            self.insert(WebhookEventRow)
            .values(
                id=event.id,
                provider=event.provider,
                external_event_id=event.external_event_id,
                event_type=event.event_type,
                payload=event.payload,
                signature=event.signature,
                status=event.status.value,
                retry_count=event.retry_count,
                max_retries=event.max_retries,
                next_retry_at=event.next_retry_at,
                last_error=event.last_error,
                processed_at=event.processed_at,
                created_at=event.created_at,
                updated_at=event.updated_at,
            )
            .on_conflict_do_nothing(index_elements=["provider", "external_event_id"])
            .returning(WebhookEventRow.id)
        )
        return await self.execute_claim(stmt) is not None

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
        stmt = update(WebhookEventRow).where(
            WebhookEventRow.id == event_id,
            WebhookEventRow.status.in_([s.value for s in expected]),
        )
        if due_by is not None:
            stmt = stmt.where(WebhookEventRow.next_retry_at <= due_by)
        stmt = _with_attempts(stmt, expected_attempts)
        return await self.execute_write(stmt.values(status=new.value, updated_at=now)) == 1

    async def update(
        self,
        event: WebhookEvent,
        *,
        expected: WebhookEventStatus,
        expected_attempts: tuple[int, int] | None = None,
    ) -> bool:
        stmt = _with_attempts(
            update(WebhookEventRow).where(
                WebhookEventRow.id == event.id, WebhookEventRow.status == expected.value
            ),
            expected_attempts,
        )
        stmt = stmt.values(
            status=event.status.value,
            retry_count=event.retry_count,
            max_retries=event.max_retries,
            next_retry_at=event.next_retry_at,
            last_error=event.last_error,
            processed_at=event.processed_at,
            updated_at=event.updated_at,
        )
        return await self.execute_write(stmt) == 1

    async def query_ready(self, *, now: datetime, limit: int) -> Sequence[WebhookEvent]:
        stmt = (
            select(WebhookEventRow)
            .where(
                WebhookEventRow.status.in_(_READY_STATES),
                WebhookEventRow.next_retry_at.is_not(None),
                WebhookEventRow.next_retry_at <= now,
            )
            .order_by(WebhookEventRow.next_retry_at.asc(), WebhookEventRow.id.asc())
            .limit(limit)
        )
        return [self._to_entity(row) for row in await self.fetch_all(stmt)]

    async def list_by_status(
        self, status: WebhookEventStatus, *, limit: int
    ) -> Sequence[WebhookEvent]:
        stmt = self.order_by_latest(
            select(WebhookEventRow).where(WebhookEventRow.status == status.value),
            WebhookEventRow.updated_at,
            WebhookEventRow.id,
        ).limit(limit)
        return [self._to_entity(row) for row in await self.fetch_all(stmt)]

    async def find_stale_processing(
        self, *, updated_before: datetime, limit: int
    ) -> Sequence[WebhookEvent]:
        stmt = (
            select(WebhookEventRow)
            .where(
                WebhookEventRow.status == WebhookEventStatus.PROCESSING.value,
                WebhookEventRow.updated_at < updated_before,
            )
            .order_by(WebhookEventRow.updated_at.asc(), WebhookEventRow.id.asc())
            .limit(limit)
        )
        return [self._to_entity(row) for row in await self.fetch_all(stmt)]

    def _to_entity(self, row: WebhookEventRow) -> WebhookEvent:
        return WebhookEvent(
            id=row.id,
            provider=row.provider,
            external_event_id=row.external_event_id,
            event_type=row.event_type,
            payload=row.payload,
            signature=row.signature,
            status=WebhookEventStatus(row.status),
            retry_count=row.retry_count,
            max_retries=row.max_retries,
            next_retry_at=self.as_utc(row.next_retry_at),
            last_error=row.last_error,
            processed_at=self.as_utc(row.processed_at),
            created_at=self.require_utc(row.created_at, "created_at"),
            updated_at=self.require_utc(row.updated_at, "updated_at"),
        )


__all__ = ["SqlAlchemyWebhookEventRepository"]

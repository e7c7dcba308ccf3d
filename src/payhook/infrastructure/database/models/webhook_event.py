# src/payhook/infrastructure/database/models/webhook_event.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Webhook event model.

Purpose:
    Persistence shape for inbound webhook events and their delivery state.

Layer:
    infrastructure/database

Notes:
    * ``uq_webhook_events_provider_external_event_id`` enforces the dedup key.
    * ``ix_webhook_events_status_next_retry_at`` serves the ready-batch query.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from payhook.domain.entities.webhook_event import DEFAULT_MAX_RETRIES
from payhook.domain.enums.processing import WebhookEventStatus
from payhook.infrastructure.database.models.base import Base, TimestampMixin


class WebhookEventRow(TimestampMixin, Base):
    """Row backing :class:`payhook.domain.entities.webhook_event.WebhookEvent`."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint(
            "provider", "external_event_id", name="uq_webhook_events_provider_external_event_id"
        ),
        Index("ix_webhook_events_status_next_retry_at", "status", "next_retry_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WebhookEventStatus.PENDING.value
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_MAX_RETRIES
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


__all__ = ["WebhookEventRow"]

# src/payhook/infrastructure/database/models/idempotency.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Idempotency key model.

Purpose:
    Persistence shape for idempotency records.

Layer:
    infrastructure/database

Notes:
    The primary key on ``key`` is the uniqueness guarantee behind the
    guard's atomic claim. ``expires_at`` is indexed for the purge job.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from payhook.domain.enums.processing import IdempotencyStatus
from payhook.infrastructure.database.models.base import (
    Base,
    JSONType,
    TimestampMixin,
)


class IdempotencyKey(TimestampMixin, Base):
    """Row backing :class:`payhook.domain.entities.idempotency_record.IdempotencyRecord`.

    Attributes:
        key: Client-supplied idempotency key (primary key).
        request_hash: SHA-256 hex digest of the claiming request.
        status: ``PROCESSING`` or ``COMPLETED``.
        status_code: Stored response status, set on completion.
        response_body: Stored response body, set on completion.
        response_media_type: Original ``Content-Type`` of the response.
        response_encoding: ``json`` or ``base64``; how ``response_body`` is held.
        expires_at: Time after which the row is treated as absent.
    """

    __tablename__ = "idempotency_keys"
    __table_args__ = (Index("ix_idempotency_keys_expires_at", "expires_at"),)

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=IdempotencyStatus.PROCESSING.value
    )
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[Any] = mapped_column(JSONType, nullable=True)
    response_media_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    response_encoding: Mapped[str | None] = mapped_column(String(16), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


__all__ = ["IdempotencyKey"]

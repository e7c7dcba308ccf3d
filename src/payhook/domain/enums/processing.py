# src/payhook/domain/enums/processing.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Processing status enums.

Purpose:
    Define the lifecycle statuses shared by the idempotency guard and the
    webhook delivery processor.

Layer:
    domain/enums

Notes:
    Values are persisted verbatim; renaming a member requires a migration.
"""

from __future__ import annotations

from enum import Enum


class IdempotencyStatus(str, Enum):
    """Lifecycle of an idempotency record."""

    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


class WebhookEventStatus(str, Enum):
    """Lifecycle of a stored webhook event."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    DEAD_LETTERED = "DEAD_LETTERED"

    @classmethod
    def ready_states(cls) -> frozenset[WebhookEventStatus]:
        """Statuses eligible for dispatch once ``next_retry_at`` is due."""
        return frozenset({cls.PENDING, cls.FAILED})

    @property
    def is_terminal(self) -> bool:
        return self in (WebhookEventStatus.SUCCEEDED, WebhookEventStatus.DEAD_LETTERED)


__all__ = ["IdempotencyStatus", "WebhookEventStatus"]

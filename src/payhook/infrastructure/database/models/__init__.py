# src/payhook/infrastructure/database/models/__init__.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""ORM models; importing this package registers every table on ``metadata``."""

from payhook.infrastructure.database.models.base import Base, metadata
from payhook.infrastructure.database.models.idempotency import IdempotencyKey
from payhook.infrastructure.database.models.webhook_event import WebhookEventRow

__all__ = ["Base", "IdempotencyKey", "WebhookEventRow", "metadata"]

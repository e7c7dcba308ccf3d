# src/payhook/application/interfaces/event_publisher.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Lifecycle event publisher port.

Layer:
    application

Notes:
    Called only after the state write that produced the events has been
    committed.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from payhook.domain.entities.webhook_lifecycle_events import WebhookLifecycleEvent


class EventPublisher(Protocol):
    """Receives lifecycle events emitted by webhook transitions."""

    async def publish(self, events: Sequence[WebhookLifecycleEvent]) -> None:
        raise NotImplementedError


__all__ = ["EventPublisher"]

# src/payhook/application/services/handler_registry.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Webhook event handler registry.

Purpose:
    Map provider event types (``checkout.session.completed``,
    ``charge.success``, ...) to the coroutine that performs the side effect.
    The surrounding application registers handlers; the processor only
    resolves them.

Layer:
    application/services
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from payhook.domain.entities.webhook_event import WebhookEvent

WebhookHandler = Callable[[WebhookEvent], Awaitable[None]]


class HandlerRegistry:
    """Registry of handlers keyed by event type."""

    def __init__(self) -> None:
        self._handlers: dict[str, WebhookHandler] = {}

    def register(self, event_type: str, handler: WebhookHandler, *, replace: bool = False) -> None:
        """Register ``handler`` for ``event_type``.

        Args:
            event_type: Provider event type, matched exactly.
            handler: Coroutine function receiving the stored event.
            replace: Allow overriding an existing registration.

        Raises:
            ValueError: If ``event_type`` is blank or already registered and
                ``replace`` is False.
        """
        normalized = event_type.strip()
        if not normalized:
            raise ValueError("event_type must not be empty")
        if normalized in self._handlers and not replace:
            raise ValueError(f"handler already registered for {normalized!r}")
        self._handlers[normalized] = handler

    def on(self, event_type: str) -> Callable[[WebhookHandler], WebhookHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: WebhookHandler) -> WebhookHandler:
            self.register(event_type, handler)
            return handler

        return decorator

    def resolve(self, event_type: str) -> WebhookHandler | None:
        return self._handlers.get(event_type)

    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


__all__ = ["HandlerRegistry", "WebhookHandler"]

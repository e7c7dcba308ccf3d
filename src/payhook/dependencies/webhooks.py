# src/payhook/dependencies/webhooks.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Dependency wiring for the webhook processor.

Overview:
    Builds :class:`WebhookProcessor` instances from settings for both the
    FastAPI router and the CLI worker.

Layer:
    dependencies

Design:
    * The handler and verifier registries live on ``app.state`` and are
      shared by every request; processors and repositories are per session.
    * Tests override :func:`get_webhook_processor` with a processor backed by
      in-memory stores.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from payhook.adapters.gateways.signature_verifiers import (
    PaystackSignatureVerifier,
    StripeSignatureVerifier,
)
from payhook.adapters.repositories.webhook_event_repository import (
    SqlAlchemyWebhookEventRepository,
)
from payhook.application.interfaces.clock import Clock
from payhook.application.services.handler_registry import HandlerRegistry
from payhook.application.services.signature_registry import SignatureVerifierRegistry
from payhook.application.use_cases.webhook_processor import WebhookProcessor
from payhook.config.settings import Settings, get_settings
from payhook.domain.services.retry_backoff import RetryBackoffPolicy
from payhook.infrastructure.clock.system_clock import SystemClock
from payhook.infrastructure.database.session import get_db_session
from payhook.infrastructure.events.logging_publisher import LoggingEventPublisher


def build_signature_registry(settings: Settings, clock: Clock) -> SignatureVerifierRegistry:
    """Register the built-in providers with their configured secrets.

    Providers without a secret are still registered so they fail closed with
    ``WEBHOOK_SIGNATURE_INVALID`` instead of looking unknown.
    """
    registry = SignatureVerifierRegistry()
    registry.register(
        "stripe",
        StripeSignatureVerifier(
            clock, tolerance_seconds=settings.stripe_signature_tolerance_seconds
        ),
        settings.provider_secret("stripe"),
    )
    registry.register(
        "paystack", PaystackSignatureVerifier(), settings.provider_secret("paystack")
    )
    return registry


def build_backoff_policy(settings: Settings) -> RetryBackoffPolicy:
    return RetryBackoffPolicy(
        base_seconds=settings.webhook_backoff_base_seconds,
        cap_seconds=settings.webhook_backoff_cap_seconds,
        jitter_ratio=settings.webhook_backoff_jitter_ratio,
    )


def build_webhook_processor(
    session: AsyncSession,
    *,
    settings: Settings,
    handlers: HandlerRegistry,
    verifiers: SignatureVerifierRegistry,
    clock: Clock | None = None,
) -> WebhookProcessor:
    """Assemble a processor over a SQLAlchemy session."""
    return WebhookProcessor(
        store=SqlAlchemyWebhookEventRepository(session),
        verifiers=verifiers,
        handlers=handlers,
        clock=clock or SystemClock(),
        backoff=build_backoff_policy(settings),
        publisher=LoggingEventPublisher(),
        max_retries=settings.webhook_max_retries,
        handler_timeout_seconds=settings.webhook_handler_timeout_seconds,
        batch_size=settings.webhook_batch_size,
        stale_after_seconds=settings.webhook_stale_processing_seconds,
        redrive_attempts=settings.webhook_redrive_attempts,
    )


async def get_webhook_processor(request: Request) -> AsyncGenerator[WebhookProcessor, None]:
    """FastAPI dependency yielding a session-scoped processor."""
    state = request.app.state
    settings: Settings = getattr(state, "settings", None) or get_settings()
    async with get_db_session() as session:
        yield build_webhook_processor(
            session,
            settings=settings,
            handlers=state.handlers,
            verifiers=state.verifiers,
        )


__all__ = [
    "build_backoff_policy",
    "build_signature_registry",
    "build_webhook_processor",
    "get_webhook_processor",
]

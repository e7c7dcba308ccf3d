# src/payhook/main.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""
Application Entry (Adapters Bootstrap)

Synopsis:
    FastAPI application factory wiring the idempotency middleware, the error
    envelope handlers and the webhook intake routes.

Design:
    • Bootstrap only (no business logic).
    • Lifespan initializes the DB engine and disposes it on shutdown.
    • Handler and verifier registries are attached to ``app.state`` at
      creation time so dependencies work with or without lifespan events.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from payhook import __version__
from payhook.adapters.routers.health_router import router as health_router
from payhook.adapters.routers.webhooks_router import router as webhooks_router
from payhook.application.interfaces.clock import Clock
from payhook.application.services.handler_registry import HandlerRegistry
from payhook.application.services.signature_registry import SignatureVerifierRegistry
from payhook.config.settings import Settings, get_settings
from payhook.dependencies.webhooks import build_signature_registry
from payhook.infrastructure.clock.system_clock import SystemClock
from payhook.infrastructure.database import session as db_session
from payhook.infrastructure.http.errors import register_exception_handlers
from payhook.infrastructure.logging.logger import configure_root_logging, get_json_logger
from payhook.infrastructure.middleware.idempotency import IdempotencyMiddleware

logger = get_json_logger(__name__)


@asynccontextmanager
async def runtime_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize the database engine for the lifetime of the app."""
    settings: Settings = app.state.settings
    db_session.init_engine_and_sessionmaker(settings)
    logger.info("service.startup", extra={"extra": {"env": settings.environment.value}})
    try:
        yield
    finally:
        await db_session.dispose_engine()
        logger.info("service.shutdown")


def _attach_middlewares(app: FastAPI, settings: Settings, clock: Clock) -> None:
    # HTTP idempotency for write operations (POST/PUT/PATCH/DELETE).
    if settings.idempotency_enabled:
        app.add_middleware(
            IdempotencyMiddleware,
            ttl_seconds=settings.idempotency_ttl_seconds,
            claim_attempts=settings.idempotency_claim_attempts,
            clock=clock,
        )
        logger.info(
            "idempotency_enabled",
            extra={"extra": {"ttl_seconds": settings.idempotency_ttl_seconds}},
        )


def create_app(
    settings: Settings | None = None,
    *,
    handlers: HandlerRegistry | None = None,
    verifiers: SignatureVerifierRegistry | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Explicit settings; defaults to :func:`get_settings`.
        handlers: Event-type handlers run by the worker. Intake only stores
            events, so an empty registry is valid for an API-only process.
        verifiers: Provider verification; defaults to the configured
            Stripe and Paystack secrets.
        clock: Time source shared by middleware and verifiers.

    Returns:
        FastAPI: Fully configured application instance.
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    configure_root_logging(settings.log_level, service=settings.service_name)

    app = FastAPI(
        title="Payhook",
        version=__version__,
        description="Webhook intake with idempotent, retried delivery.",
        lifespan=runtime_lifespan,
    )
    app.state.settings = settings
    app.state.handlers = handlers or HandlerRegistry()
    app.state.verifiers = verifiers or build_signature_registry(settings, clock)

    register_exception_handlers(app)
    _attach_middlewares(app, settings, clock)

    app.include_router(webhooks_router)
    app.include_router(health_router)

    logger.info(
        "service.created",
        extra={
            "extra": {
                "env": settings.environment.value,
                "version": __version__,
                "providers": app.state.verifiers.providers(),
            }
        },
    )
    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(
        "payhook.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=int(os.getenv("PORT", "8080")),
    )

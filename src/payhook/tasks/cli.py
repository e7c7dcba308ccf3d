# src/payhook/tasks/cli.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Payhook CLI: delivery worker and operator commands.

Commands:
    worker run               Poll, dispatch ready batches and reap stale claims.
    worker dispatch-once     Dispatch a single ready batch.
    worker reap              Reclaim events stuck in PROCESSING.
    dead-letters list        Print dead-lettered events as JSON lines.
    dead-letters redrive ID  Return a dead-lettered event to the retry queue.
    idempotency purge        Delete expired idempotency keys.

Environment:
    DATABASE_URL       Async SQLAlchemy URL.
    PAYHOOK_HANDLERS   ``module:attribute`` of a HandlerRegistry for the worker.
"""

from __future__ import annotations

import asyncio
import importlib
import json
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

import typer
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payhook.adapters.repositories.idempotency_repository import (
    SqlAlchemyIdempotencyRepository,
)
from payhook.application.services.handler_registry import HandlerRegistry
from payhook.application.use_cases.purge_expired_idempotency_keys import (
    PurgeExpiredIdempotencyKeys,
)
from payhook.application.use_cases.webhook_processor import BatchReport, WebhookProcessor
from payhook.config.settings import Settings, get_settings
from payhook.dependencies.webhooks import build_signature_registry, build_webhook_processor
from payhook.domain.exceptions.webhooks import InvalidStateTransition, WebhookEventNotFound
from payhook.infrastructure.clock.system_clock import SystemClock
from payhook.infrastructure.database.session import create_engine_for_url, make_sessionmaker
from payhook.infrastructure.logging.logger import configure_root_logging, get_json_logger
from payhook.infrastructure.observability.metrics import get_webhook_batch_duration_seconds
from payhook.infrastructure.resilience.retry import RetryPolicy, retry_async

log = get_json_logger(__name__)

app = typer.Typer(add_completion=False, no_args_is_help=True)
worker_app = typer.Typer(no_args_is_help=True)
dead_letters_app = typer.Typer(no_args_is_help=True)
idempotency_app = typer.Typer(no_args_is_help=True)
app.add_typer(worker_app, name="worker")
app.add_typer(dead_letters_app, name="dead-letters")
app.add_typer(idempotency_app, name="idempotency")

DB_RETRY_POLICY = RetryPolicy(total=3, base=0.5, cap=5.0, jitter=True)


def _settings() -> Settings:
    try:
        settings = get_settings()
    except RuntimeError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from exc
    configure_root_logging(settings.log_level, service=settings.service_name)
    return settings


def load_handlers(target: str) -> HandlerRegistry:
    """Import a :class:`HandlerRegistry` from ``module:attribute``.

    Raises:
        typer.BadParameter: If the target is malformed or not a registry.
    """
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise typer.BadParameter("expected 'module:attribute'", param_hint="--handlers")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"cannot import {module_name!r}: {exc}") from exc
    registry = getattr(module, attribute, None)
    if not isinstance(registry, HandlerRegistry):
        raise typer.BadParameter(f"{target!r} is not a HandlerRegistry", param_hint="--handlers")
    return registry


@asynccontextmanager
async def _sessions(settings: Settings) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_engine_for_url(settings.database_url, echo=settings.database_echo)
    try:
        yield make_sessionmaker(engine)
    finally:
        await engine.dispose()


def _is_transient(exc: Exception) -> bool:
    return isinstance(exc, OperationalError)


class _Worker:
    """Builds one processor per unit of work over a fresh session."""

    def __init__(
        self,
        settings: Settings,
        sessions: async_sessionmaker[AsyncSession],
        handlers: HandlerRegistry,
    ) -> None:
        self._settings = settings
        self._sessions = sessions
        self._handlers = handlers
        self._clock = SystemClock()
        self._verifiers = build_signature_registry(settings, self._clock)

    @asynccontextmanager
    async def processor(self) -> AsyncIterator[WebhookProcessor]:
        async with self._sessions() as session:
            yield build_webhook_processor(
                session,
                settings=self._settings,
                handlers=self._handlers,
                verifiers=self._verifiers,
                clock=self._clock,
            )

    async def dispatch_batch(self, limit: int | None = None) -> BatchReport:
        async def _once() -> BatchReport:
            async with self.processor() as processor:
                return await processor.dispatch_ready_batch(limit)

        started = time.perf_counter()
        report = await retry_async(_once, policy=DB_RETRY_POLICY, retry_on=_is_transient)
        if report.total:
            get_webhook_batch_duration_seconds().observe(time.perf_counter() - started)
        return report

    async def reap(self, limit: int) -> int:
        async def _once() -> int:
            async with self.processor() as processor:
                return await processor.reap_stale(limit=limit)

        return await retry_async(_once, policy=DB_RETRY_POLICY, retry_on=_is_transient)


@worker_app.command("run")
def worker_run(
    handlers: str = typer.Option(
        ..., envvar="PAYHOOK_HANDLERS", help="HandlerRegistry as module:attribute."
    ),  # noqa: B008
    max_polls: int = typer.Option(
        0, min=0, help="Stop after this many polls (0 = run until interrupted)."
    ),  # noqa: B008
) -> None:
    """Poll for ready events until interrupted.

    Each poll reaps stale claims, then dispatches one ready batch. A full
    batch is followed immediately by another poll; otherwise the worker
    sleeps for ``WEBHOOK_POLL_INTERVAL_SECONDS``.
    """
    settings = _settings()
    registry = load_handlers(handlers)

    async def _run() -> None:
        async with _sessions(settings) as sessions:
            worker = _Worker(settings, sessions, registry)
            polls = 0
            log.info(
                "worker.started",
                extra={
                    "extra": {
                        "event_types": registry.event_types(),
                        "batch_size": settings.webhook_batch_size,
                    }
                },
            )
            while not max_polls or polls < max_polls:
                polls += 1
                await worker.reap(limit=100)
                report = await worker.dispatch_batch()
                if report.total < settings.webhook_batch_size:
                    await asyncio.sleep(settings.webhook_poll_interval_seconds)
            log.info("worker.stopped", extra={"extra": {"polls": polls}})

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        log.info("worker.interrupted")


@worker_app.command("dispatch-once")
def worker_dispatch_once(
    handlers: str = typer.Option(
        ..., envvar="PAYHOOK_HANDLERS", help="HandlerRegistry as module:attribute."
    ),  # noqa: B008
    limit: int | None = typer.Option(  # noqa: B008
        None, min=1, help="Override WEBHOOK_BATCH_SIZE."
    ),
) -> None:
    """Dispatch one ready batch and print the outcome counts."""
    settings = _settings()
    registry = load_handlers(handlers)

    async def _run() -> BatchReport:
        async with _sessions(settings) as sessions:
            return await _Worker(settings, sessions, registry).dispatch_batch(limit)

    report = asyncio.run(_run())
    typer.echo(json.dumps(report.as_dict(), sort_keys=True))


@worker_app.command("reap")
def worker_reap(
    limit: int = typer.Option(100, min=1, help="Maximum events to reclaim."),  # noqa: B008
) -> None:
    """Fail events whose PROCESSING claim outlived the stale timeout."""
    settings = _settings()

    async def _run() -> int:
        async with _sessions(settings) as sessions:
            return await _Worker(settings, sessions, HandlerRegistry()).reap(limit)

    typer.echo(f"reaped={asyncio.run(_run())}")


@dead_letters_app.command("list")
def dead_letters_list(
    limit: int = typer.Option(100, min=1, max=1000),  # noqa: B008
) -> None:
    """Print dead-lettered events, most recently updated first."""
    settings = _settings()

    async def _run() -> list[dict[str, object]]:
        async with _sessions(settings) as sessions:
            worker = _Worker(settings, sessions, HandlerRegistry())
            async with worker.processor() as processor:
                events = await processor.list_dead_letters(limit)
        return [
            {
                "id": str(e.id),
                "provider": e.provider,
                "external_event_id": e.external_event_id,
                "event_type": e.event_type,
                "retry_count": e.retry_count,
                "max_retries": e.max_retries,
                "last_error": e.last_error,
                "updated_at": e.updated_at.isoformat(),
            }
            for e in events
        ]

    for row in asyncio.run(_run()):
        typer.echo(json.dumps(row, sort_keys=True))


@dead_letters_app.command("redrive")
def dead_letters_redrive(
    event_id: UUID = typer.Argument(..., help="Webhook event id."),  # noqa: B008
    attempts: int | None = typer.Option(
        None, min=1, help="Extra attempts; defaults to WEBHOOK_REDRIVE_ATTEMPTS."
    ),  # noqa: B008
) -> None:
    """Move a dead-lettered event back to FAILED, due immediately."""
    settings = _settings()

    async def _run() -> None:
        async with _sessions(settings) as sessions:
            worker = _Worker(settings, sessions, HandlerRegistry())
            async with worker.processor() as processor:
                event = await processor.redrive(event_id, additional_attempts=attempts)
        typer.echo(
            json.dumps(
                {
                    "id": str(event.id),
                    "status": event.status.value,
                    "retry_count": event.retry_count,
                    "max_retries": event.max_retries,
                },
                sort_keys=True,
            )
        )

    try:
        asyncio.run(_run())
    except (WebhookEventNotFound, InvalidStateTransition) as exc:
        typer.echo(f"{exc.code}: {exc.message}", err=True)
        raise typer.Exit(code=1) from exc


@idempotency_app.command("purge")
def idempotency_purge() -> None:
    """Delete idempotency keys whose expiry has passed."""
    settings = _settings()

    async def _run() -> int:
        async with _sessions(settings) as sessions, sessions() as session:
            uc = PurgeExpiredIdempotencyKeys(
                store=SqlAlchemyIdempotencyRepository(session), clock=SystemClock()
            )
            return await uc.execute()

    typer.echo(f"deleted={asyncio.run(_run())}")


if __name__ == "__main__":
    app()

# tests/conftest.py
"""Shared fixtures: a controllable clock and in-memory storage fakes.

The fakes mirror the conditional-write semantics of the SQLAlchemy
repositories and yield to the event loop on every call, so tests using
``asyncio.gather`` see real interleavings.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import os
import random
import uuid
from collections.abc import AsyncGenerator, Collection, Sequence
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from payhook.application.services.handler_registry import HandlerRegistry
from payhook.application.services.signature_registry import SignatureVerifierRegistry
from payhook.application.use_cases.webhook_processor import WebhookProcessor
from payhook.domain.entities.idempotency_record import IdempotencyRecord, StoredResponse
from payhook.domain.entities.webhook_event import WebhookEvent
from payhook.domain.entities.webhook_lifecycle_events import WebhookLifecycleEvent
from payhook.domain.enums.processing import IdempotencyStatus, WebhookEventStatus
from payhook.domain.services.retry_backoff import RetryBackoffPolicy
from payhook.infrastructure.database.models import metadata
from payhook.infrastructure.database.session import create_engine_for_url, make_sessionmaker

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
TEST_SECRET = "whsec_test_secret"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


class InMemoryIdempotencyStore:
    """Dict-backed :class:`IdempotencyStore` with the same claim rules as SQL."""

    def __init__(self) -> None:
        self.records: dict[str, IdempotencyRecord] = {}
        self.inserts = 0

    async def get_by_key(self, key: str) -> IdempotencyRecord | None:
        await asyncio.sleep(0)
        return self.records.get(key)

    async def insert_if_absent(self, record: IdempotencyRecord, *, now: datetime) -> bool:
        await asyncio.sleep(0)
        existing = self.records.get(record.key)
        if existing is not None and not existing.expires_at < now:
            return False
        self.records[record.key] = record
        self.inserts += 1
        return True

    async def complete(
        self, key: str, *, request_hash: str, response: StoredResponse, now: datetime
    ) -> bool:
        await asyncio.sleep(0)
        existing = self.records.get(key)
        if (
            existing is None
            or existing.request_hash != request_hash
            or existing.status is not IdempotencyStatus.PROCESSING
        ):
            return False
        self.records[key] = existing.complete(response)
        return True

    async def release(self, key: str, *, request_hash: str) -> bool:
        await asyncio.sleep(0)
        existing = self.records.get(key)
        if (
            existing is None
            or existing.request_hash != request_hash
            or existing.status is not IdempotencyStatus.PROCESSING
        ):
            return False
        del self.records[key]
        return True

    async def purge_expired(self, *, now: datetime) -> int:
        expired = [k for k, r in self.records.items() if r.expires_at < now]
        for key in expired:
            del self.records[key]
        return len(expired)


def _attempts_match(event: WebhookEvent, expected_attempts: tuple[int, int] | None) -> bool:
    return expected_attempts is None or (event.retry_count, event.max_retries) == expected_attempts


class InMemoryWebhookEventStore:
    """Dict-backed :class:`WebhookEventStore` with compare-and-set status writes."""

    def __init__(self) -> None:
        self.events: dict[uuid.UUID, WebhookEvent] = {}
        self.history: dict[uuid.UUID, list[tuple[WebhookEventStatus, int]]] = {}

    def _record(self, event: WebhookEvent) -> None:
        self.events[event.id] = event
        self.history.setdefault(event.id, []).append((event.status, event.retry_count))

    def put(self, event: WebhookEvent) -> WebhookEvent:
        self._record(event)
        return event

    async def get_by_id(self, event_id: uuid.UUID) -> WebhookEvent | None:
        await asyncio.sleep(0)
        return self.events.get(event_id)

    async def get_by_key(self, provider: str, external_event_id: str) -> WebhookEvent | None:
        await asyncio.sleep(0)
        for event in self.events.values():
            if event.dedup_key == (provider, external_event_id):
                return event
        return None

    async def insert_if_absent(self, event: WebhookEvent) -> bool:
        await asyncio.sleep(0)
        if any(e.dedup_key == event.dedup_key for e in self.events.values()):
            return False
        self._record(event)
        return True

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
        await asyncio.sleep(0)
        current = self.events.get(event_id)
        if current is None or current.status not in expected:
            return False
        if due_by is not None and (
            current.next_retry_at is None or current.next_retry_at > due_by
        ):
            return False
        if not _attempts_match(current, expected_attempts):
            return False
        self._record(replace(current, status=new, updated_at=now))
        return True

    async def update(
        self,
        event: WebhookEvent,
        *,
        expected: WebhookEventStatus,
        expected_attempts: tuple[int, int] | None = None,
    ) -> bool:
        await asyncio.sleep(0)
        current = self.events.get(event.id)
        if current is None or current.status is not expected:
            return False
        if not _attempts_match(current, expected_attempts):
            return False
        self._record(event)
        return True

    async def query_ready(self, *, now: datetime, limit: int) -> Sequence[WebhookEvent]:
        await asyncio.sleep(0)
        ready = [e for e in self.events.values() if e.is_ready(now)]
        ready.sort(key=lambda e: (e.next_retry_at, str(e.id)))
        return ready[:limit]

    async def list_by_status(
        self, status: WebhookEventStatus, *, limit: int
    ) -> Sequence[WebhookEvent]:
        matching = [e for e in self.events.values() if e.status is status]
        matching.sort(key=lambda e: e.updated_at, reverse=True)
        return matching[:limit]

    async def find_stale_processing(
        self, *, updated_before: datetime, limit: int
    ) -> Sequence[WebhookEvent]:
        stale = [
            e
            for e in self.events.values()
            if e.status is WebhookEventStatus.PROCESSING and e.updated_at < updated_before
        ]
        stale.sort(key=lambda e: e.updated_at)
        return stale[:limit]


class RecordingPublisher:
    def __init__(self) -> None:
        self.published: list[WebhookLifecycleEvent] = []

    async def publish(self, events: Sequence[WebhookLifecycleEvent]) -> None:
        self.published.extend(events)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.published]


class SharedSecretVerifier:
    """Hex HMAC-SHA256 verifier used by processor tests."""

    def verify(self, payload: bytes, signature: str, secret: str) -> bool:
        expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)


def sign(payload: bytes, secret: str = TEST_SECRET) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def idempotency_store() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def event_store() -> InMemoryWebhookEventStore:
    return InMemoryWebhookEventStore()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def handlers() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def verifiers() -> SignatureVerifierRegistry:
    registry = SignatureVerifierRegistry()
    registry.register("acme", SharedSecretVerifier(), TEST_SECRET)
    registry.register("unconfigured", SharedSecretVerifier(), None)
    return registry


@pytest.fixture
def processor(
    event_store: InMemoryWebhookEventStore,
    verifiers: SignatureVerifierRegistry,
    handlers: HandlerRegistry,
    clock: FakeClock,
    publisher: RecordingPublisher,
) -> WebhookProcessor:
    return WebhookProcessor(
        store=event_store,
        verifiers=verifiers,
        handlers=handlers,
        clock=clock,
        backoff=RetryBackoffPolicy(base_seconds=1.0, cap_seconds=60.0, jitter_ratio=0.1),
        publisher=publisher,
        max_retries=3,
        handler_timeout_seconds=0.5,
        batch_size=10,
        stale_after_seconds=600.0,
        redrive_attempts=2,
        rng=random.Random(7),
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Engine with the payhook tables created; SQLite in memory unless overridden."""
    url = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    engine = create_engine_for_url(url)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    async with make_sessionmaker(db_engine)() as session:
        yield session


@pytest.fixture
def sign_payload():
    """Return a function producing the ``acme`` provider signature for a body."""
    return sign

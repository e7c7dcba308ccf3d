# src/payhook/application/use_cases/idempotency_guard.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Use case: run an operation at most once per idempotency key.

Purpose:
    Guard a side-effecting operation behind a client-supplied key. The first
    caller claims the key and runs the operation; later callers get the
    stored response back, or a conflict while the first is still running.

Layer:
    application/use_cases

Notes:
    Decision table for an existing, unexpired record:

        ============  ==============  =========================
        status        request hash    outcome
        ============  ==============  =========================
        COMPLETED     any             replay stored response
        PROCESSING    same            ConflictInProgress
        PROCESSING    different       KeyReuseMismatch
        ============  ==============  =========================

    A failed operation releases the key so the client can retry it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from payhook.application.interfaces.clock import Clock
from payhook.domain.entities.idempotency_record import (
    IdempotencyRecord,
    StoredResponse,
    validate_idempotency_key,
)
from payhook.domain.enums.processing import IdempotencyStatus
from payhook.domain.exceptions.idempotency import (
    ConflictInProgress,
    InvalidIdempotencyKey,
    KeyReuseMismatch,
)
from payhook.domain.interfaces.repositories.idempotency_store import IdempotencyStore

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[StoredResponse]]

DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class GuardResult:
    """Outcome of :meth:`IdempotencyGuard.execute`."""

    response: StoredResponse
    replayed: bool


class IdempotencyGuard:
    """Run operations at most once per key.

    Args:
        store: Idempotency storage port.
        clock: Time source for claim and expiry decisions.
        ttl_seconds: Lifetime of a claimed key.
        claim_attempts: Bound on claim retries when the atomic insert loses a
            race with a record that then disappears or expires.
    """

    def __init__(
        self,
        *,
        store: IdempotencyStore,
        clock: Clock,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        claim_attempts: int = 3,
    ) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")
        if claim_attempts < 1:
            raise ValueError("claim_attempts must be >= 1")
        self._store = store
        self._clock = clock
        self._ttl_seconds = ttl_seconds
        self._claim_attempts = claim_attempts

    async def execute(self, key: str, request_hash: str, operation: Operation) -> GuardResult:
        """Run ``operation`` once for ``key`` or replay its stored response.

        Args:
            key: Client-supplied idempotency key.
            request_hash: Fingerprint of the current request.
            operation: Zero-argument coroutine function producing the response.

        Returns:
            GuardResult: The response and whether it was replayed.

        Raises:
            InvalidIdempotencyKey: If ``key`` or ``request_hash`` is invalid.
            ConflictInProgress: If the same request is still in flight, or the
                claim kept losing races.
            KeyReuseMismatch: If the key is in flight for a different request.
            Exception: Whatever ``operation`` raised, after the key is released.
        """
        validate_idempotency_key(key)
        if not request_hash:
            raise InvalidIdempotencyKey("request_hash must not be empty.")

        for attempt in range(1, self._claim_attempts + 1):
            now = self._clock.now()
            existing = await self._store.get_by_key(key)
            if existing is not None and not existing.is_expired(now):
                return self._resolve_existing(existing, request_hash)

            record = IdempotencyRecord.start(
                key=key, request_hash=request_hash, now=now, ttl_seconds=self._ttl_seconds
            )
            if await self._store.insert_if_absent(record, now=now):
                return await self._run_claimed(record, operation)

            logger.debug(
                "idempotency.claim.lost",
                extra={"extra": {"key": key, "attempt": attempt}},
            )

        logger.warning(
            "idempotency.claim.exhausted",
            extra={"extra": {"key": key, "attempts": self._claim_attempts}},
        )
        raise ConflictInProgress(
            "Another request with the same Idempotency-Key is in progress.",
            details={"key": key},
        )

    def _resolve_existing(self, existing: IdempotencyRecord, request_hash: str) -> GuardResult:
        if existing.status is IdempotencyStatus.COMPLETED and existing.response is not None:
            logger.info(
                "idempotency.replay",
                extra={
                    "extra": {
                        "key": existing.key,
                        "hash_matches": existing.matches(request_hash),
                    }
                },
            )
            return GuardResult(response=existing.response, replayed=True)
        if existing.matches(request_hash):
            raise ConflictInProgress(
                "Another request with the same Idempotency-Key is in progress.",
                details={"key": existing.key},
            )
        raise KeyReuseMismatch(
            "Idempotency-Key reused with a different request payload.",
            details={"key": existing.key},
        )

    async def _run_claimed(self, record: IdempotencyRecord, operation: Operation) -> GuardResult:
        try:
            response = await operation()
        except Exception:
            released = await self._store.release(record.key, request_hash=record.request_hash)
            logger.info(
                "idempotency.released",
                extra={"extra": {"key": record.key, "released": released}},
            )
            raise

        completed = await self._store.complete(
            record.key,
            request_hash=record.request_hash,
            response=response,
            now=self._clock.now(),
        )
        if not completed:
            logger.warning("idempotency.complete.lost", extra={"extra": {"key": record.key}})
        return GuardResult(response=response, replayed=False)


__all__ = ["DEFAULT_TTL_SECONDS", "GuardResult", "IdempotencyGuard", "Operation"]

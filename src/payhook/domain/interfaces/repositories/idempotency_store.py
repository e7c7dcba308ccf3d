# src/payhook/domain/interfaces/repositories/idempotency_store.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Idempotency storage port.

Purpose:
    Persistence contract consumed by the idempotency guard. Every write is a
    single atomic conditional statement; implementations must commit it
    before returning so that concurrent callers observe it.

Layer:
    domain/interfaces/repositories
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from payhook.domain.entities.idempotency_record import IdempotencyRecord, StoredResponse


@runtime_checkable
class IdempotencyStore(Protocol):
    """Storage port for idempotency records."""

    async def get_by_key(self, key: str) -> IdempotencyRecord | None:
        """Return the stored record for ``key``, expired or not."""
        raise NotImplementedError

    async def insert_if_absent(self, record: IdempotencyRecord, *, now: datetime) -> bool:
        """Atomically claim ``record.key``.

        The claim succeeds when no row exists for the key, or when the
        existing row expired before ``now`` (it is then replaced).

        Returns:
            True if this call now owns the key.
        """
        raise NotImplementedError

    async def complete(
        self, key: str, *, request_hash: str, response: StoredResponse, now: datetime
    ) -> bool:
        """Move a ``PROCESSING`` record owned by ``request_hash`` to ``COMPLETED``.

        Returns:
            True if a row was transitioned.
        """
        raise NotImplementedError

    async def release(self, key: str, *, request_hash: str) -> bool:
        """Delete a ``PROCESSING`` record owned by ``request_hash``.

        Returns:
            True if a row was deleted.
        """
        raise NotImplementedError

    async def purge_expired(self, *, now: datetime) -> int:
        """Delete records that expired before ``now`` and return the count."""
        raise NotImplementedError


__all__ = ["IdempotencyStore"]

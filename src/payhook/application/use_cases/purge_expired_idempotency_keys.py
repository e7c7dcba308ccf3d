# src/payhook/application/use_cases/purge_expired_idempotency_keys.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Use case: delete expired idempotency records.

Layer:
    application/use_cases

Notes:
    Expiry is already enforced lazily by the guard; this only reclaims
    storage.
"""

from __future__ import annotations

import logging

from payhook.application.interfaces.clock import Clock
from payhook.domain.interfaces.repositories.idempotency_store import IdempotencyStore

logger = logging.getLogger(__name__)


class PurgeExpiredIdempotencyKeys:
    """Remove idempotency records whose ``expires_at`` has passed."""

    def __init__(self, *, store: IdempotencyStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    async def execute(self) -> int:
        """Delete expired records.

        Returns:
            int: Number of records deleted.
        """
        deleted = await self._store.purge_expired(now=self._clock.now())
        logger.info("idempotency.purge", extra={"extra": {"deleted": deleted}})
        return deleted


__all__ = ["PurgeExpiredIdempotencyKeys"]

# src/payhook/domain/exceptions/idempotency.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Idempotency guard exceptions.

Layer:
    domain/exceptions

Notes:
    ``ConflictInProgress`` is retryable by the caller; ``KeyReuseMismatch``
    is a permanent client error. A replay is not an error and has no
    exception type.
"""

from __future__ import annotations

from payhook.domain.exceptions.base import DomainError


class IdempotencyError(DomainError):
    """Base class for idempotency guard failures."""

    code = "IDEMPOTENCY_ERROR"


class InvalidIdempotencyKey(IdempotencyError):
    """Key or request hash is blank or exceeds the storage limit."""

    code = "IDEMPOTENCY_KEY_INVALID"


class ConflictInProgress(IdempotencyError):
    """Another request holding the same key and request hash is still running."""

    code = "IDEMPOTENCY_KEY_IN_PROGRESS"


class KeyReuseMismatch(IdempotencyError):
    """Key is in flight for a logically different request."""

    code = "IDEMPOTENCY_KEY_CONFLICT"


__all__ = [
    "IdempotencyError",
    "InvalidIdempotencyKey",
    "ConflictInProgress",
    "KeyReuseMismatch",
]

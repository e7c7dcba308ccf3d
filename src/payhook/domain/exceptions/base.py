# src/payhook/domain/exceptions/base.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Base domain exception.

Summary:
    Every error raised by the domain and application layers derives from
    :class:`DomainError`, so the HTTP boundary and the CLI can map failures by
    a stable ``code`` instead of by class name.

Layer:
    domain/exceptions
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for payhook domain/application exceptions.

    Attributes:
        code: Stable, upper-snake-case error code used in HTTP envelopes,
            metrics labels and log records.
        details: Optional machine-readable diagnostics. Never carries secrets
            or raw payloads.
    """

    code: str = "DOMAIN_ERROR"

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human-readable message, safe to surface to API clients.
            details: Optional structured diagnostic payload.
        """
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


__all__ = ["DomainError"]

# src/payhook/domain/interfaces/gateways/signature_verifier.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Signature verifier port.

Layer:
    domain/interfaces/gateways

Notes:
    Implementations must compare digests in constant time and must return
    False (never raise) for malformed signature headers.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class SignatureVerifier(Protocol):
    """Verifies that a payload was signed by a provider."""

    def verify(self, payload: bytes, signature: str, secret: str) -> bool:
        """Return True if ``signature`` is valid for ``payload`` under ``secret``."""
        raise NotImplementedError


__all__ = ["SignatureVerifier"]

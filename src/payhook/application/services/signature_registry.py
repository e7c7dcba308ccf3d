# src/payhook/application/services/signature_registry.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Per-provider signature verification.

Purpose:
    Hold one verifier and shared secret per provider and apply them to
    inbound payloads.

Layer:
    application/services

Notes:
    Verification fails closed: a provider with no configured secret rejects
    every payload.
"""

from __future__ import annotations

from dataclasses import dataclass

from payhook.domain.exceptions.webhooks import InvalidSignature, UnknownProvider
from payhook.domain.interfaces.gateways.signature_verifier import SignatureVerifier


@dataclass(frozen=True)
class ProviderVerification:
    """Verifier and secret configured for one provider."""

    verifier: SignatureVerifier
    secret: str | None


class SignatureVerifierRegistry:
    """Registry of provider verification schemes."""

    def __init__(self) -> None:
        self._providers: dict[str, ProviderVerification] = {}

    def register(self, provider: str, verifier: SignatureVerifier, secret: str | None) -> None:
        self._providers[provider.strip().lower()] = ProviderVerification(verifier, secret)

    def providers(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, provider: object) -> bool:
        return isinstance(provider, str) and provider.strip().lower() in self._providers

    def verify(self, provider: str, payload: bytes, signature: str | None) -> None:
        """Verify ``signature`` for ``payload`` from ``provider``.

        Raises:
            UnknownProvider: If no verifier is registered for ``provider``.
            InvalidSignature: If the secret is missing, the signature is
                missing, or verification fails.
        """
        normalized = provider.strip().lower()
        entry = self._providers.get(normalized)
        if entry is None:
            raise UnknownProvider(
                "No signature verifier is registered for this provider.",
                details={"provider": normalized},
            )
        if not entry.secret:
            raise InvalidSignature(
                "Webhook secret is not configured for this provider.",
                details={"provider": normalized},
            )
        if not signature:
            raise InvalidSignature("Missing webhook signature.", details={"provider": normalized})
        if not entry.verifier.verify(payload, signature, entry.secret):
            raise InvalidSignature("Invalid webhook signature.", details={"provider": normalized})


__all__ = ["ProviderVerification", "SignatureVerifierRegistry"]

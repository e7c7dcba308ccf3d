# src/payhook/adapters/gateways/signature_verifiers.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Provider signature verifiers.

Purpose:
    Constant-time HMAC verification for each supported provider scheme.

Layer:
    adapters/gateways

Notes:
    * Every comparison goes through ``hmac.compare_digest``.
    * Malformed headers return ``False``; verifiers never raise.
    * Stripe timestamps are checked against the injected clock, within
      ``tolerance_seconds`` in either direction.
"""

from __future__ import annotations

import hashlib
import hmac

from payhook.application.interfaces.clock import Clock
from payhook.infrastructure.logging.logger import get_json_logger

log = get_json_logger(__name__)

DEFAULT_STRIPE_TOLERANCE_SECONDS = 300


def _hex_hmac(secret: str, payload: bytes, digestmod: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, digestmod).hexdigest()


class HmacSha256Verifier:
    """Hex-encoded HMAC-SHA256 of the raw body."""

    def verify(self, payload: bytes, signature: str, secret: str) -> bool:
        if not secret or not signature:
            return False
        expected = _hex_hmac(secret, payload, "sha256")
        return hmac.compare_digest(expected, signature.strip().lower())


class PaystackSignatureVerifier:
    """Paystack ``X-Paystack-Signature``: hex HMAC-SHA512 of the raw body."""

    def verify(self, payload: bytes, signature: str, secret: str) -> bool:
        if not secret or not signature:
            return False
        expected = _hex_hmac(secret, payload, "sha512")
        return hmac.compare_digest(expected, signature.strip().lower())


class StripeSignatureVerifier:
    """Stripe ``Stripe-Signature`` v1 scheme.

    The header looks like ``t=<unix>,v1=<hex>[,v1=<hex>...]``. The signed
    content is ``"<t>." + body``; any one matching ``v1`` entry is accepted.
    """

    def __init__(
        self, clock: Clock, *, tolerance_seconds: int = DEFAULT_STRIPE_TOLERANCE_SECONDS
    ) -> None:
        self._clock = clock
        self._tolerance_seconds = tolerance_seconds

    def verify(self, payload: bytes, signature: str, secret: str) -> bool:
        if not secret or not signature:
            return False

        timestamp: int | None = None
        candidates: list[str] = []
        for item in signature.split(","):
            name, sep, value = item.strip().partition("=")
            if not sep:
                continue
            if name == "t":
                try:
                    timestamp = int(value)
                except ValueError:
                    return False
            elif name == "v1" and value:
                candidates.append(value)

        if timestamp is None or not candidates:
            return False

        skew = abs(self._clock.now().timestamp() - timestamp)
        if skew > self._tolerance_seconds:
            log.warning(
                "webhook.signature.stale_timestamp",
                extra={"extra": {"provider": "stripe", "skew_seconds": int(skew)}},
            )
            return False

        signed = f"{timestamp}.".encode() + payload
        expected = _hex_hmac(secret, signed, "sha256")
        return any(hmac.compare_digest(expected, candidate) for candidate in candidates)


__all__ = [
    "DEFAULT_STRIPE_TOLERANCE_SECONDS",
    "HmacSha256Verifier",
    "PaystackSignatureVerifier",
    "StripeSignatureVerifier",
]

# tests/unit/application/services/test_payhook_registries.py
from __future__ import annotations

import pytest

from payhook.application.services.handler_registry import HandlerRegistry
from payhook.application.services.signature_registry import SignatureVerifierRegistry
from payhook.domain.exceptions.webhooks import InvalidSignature, UnknownProvider


async def _noop(event) -> None:
    return None


def test_handler_registry_register_and_resolve() -> None:
    registry = HandlerRegistry()
    registry.register("invoice.paid", _noop)

    @registry.on("charge.refunded")
    async def refunded(event) -> None:
        return None

    assert registry.resolve("invoice.paid") is _noop
    assert registry.resolve("charge.refunded") is refunded
    assert registry.resolve("unknown") is None
    assert "invoice.paid" in registry
    assert len(registry) == 2
    assert registry.event_types() == ["charge.refunded", "invoice.paid"]


def test_handler_registry_rejects_duplicates_unless_replacing() -> None:
    registry = HandlerRegistry()
    registry.register("invoice.paid", _noop)
    with pytest.raises(ValueError, match="already registered"):
        registry.register("invoice.paid", _noop)
    registry.register("invoice.paid", _noop, replace=True)
    with pytest.raises(ValueError):
        registry.register("  ", _noop)


class _Always:
    def __init__(self, result: bool) -> None:
        self.result = result
        self.calls: list[tuple[bytes, str, str]] = []

    def verify(self, payload: bytes, signature: str, secret: str) -> bool:
        self.calls.append((payload, signature, secret))
        return self.result


def test_signature_registry_normalizes_provider_names() -> None:
    verifier = _Always(True)
    registry = SignatureVerifierRegistry()
    registry.register(" Stripe ", verifier, "s3cret")

    registry.verify("STRIPE", b"{}", "sig")

    assert "stripe" in registry
    assert registry.providers() == ["stripe"]
    assert verifier.calls == [(b"{}", "sig", "s3cret")]


def test_signature_registry_failures() -> None:
    registry = SignatureVerifierRegistry()
    registry.register("good", _Always(True), "s3cret")
    registry.register("bad", _Always(False), "s3cret")
    registry.register("nosecret", _Always(True), None)

    with pytest.raises(UnknownProvider):
        registry.verify("missing", b"{}", "sig")
    with pytest.raises(InvalidSignature, match="Invalid"):
        registry.verify("bad", b"{}", "sig")
    with pytest.raises(InvalidSignature, match="not configured"):
        registry.verify("nosecret", b"{}", "sig")
    with pytest.raises(InvalidSignature, match="Missing"):
        registry.verify("good", b"{}", None)

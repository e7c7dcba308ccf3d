# src/payhook/domain/services/request_fingerprint.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Request fingerprinting for idempotency keys.

Purpose:
    Produce a stable SHA-256 digest of a request so the guard can tell a
    genuine retry from a key reused for a different request.

Layer:
    domain/services

Notes:
    JSON bodies are canonicalized (sorted keys, compact separators) so that
    key order and whitespace do not change the digest. Any other body is
    hashed byte for byte. Query pairs are sorted and percent-encoded, so a
    value containing ``&`` or ``=`` cannot pose as extra parameters.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from urllib.parse import urlencode


def canonicalize_body(body: bytes) -> bytes:
    """Return a canonical byte form of ``body``."""
    if not body:
        return b""
    try:
        parsed = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        return body
    return json.dumps(parsed, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def compute_request_hash(
    *,
    method: str,
    path: str,
    body: bytes,
    query_pairs: Iterable[tuple[str, str]] = (),
) -> str:
    """Compute the fingerprint of a request.

    Args:
        method: HTTP method (case-insensitive).
        path: Request path without query string.
        body: Raw request body.
        query_pairs: Query parameters as ``(name, value)`` pairs, any order.

    Returns:
        str: 64-character hex digest.
    """
    query = urlencode(sorted(query_pairs))
    body_digest = hashlib.sha256(canonicalize_body(body)).hexdigest()
    material = f"{method.upper()}|{path}|{query}|{body_digest}".encode()
    return hashlib.sha256(material).hexdigest()


__all__ = ["canonicalize_body", "compute_request_hash"]

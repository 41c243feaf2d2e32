"""Webhook body serialization and HMAC-SHA256 signatures.

Receivers recompute ``HMAC-SHA256(secret, raw_body)`` over the exact bytes
they received and compare it to the ``X-Tokenwarden-Signature`` header
(``sha256=<hex>``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any

SIGNATURE_HEADER = "X-Tokenwarden-Signature"
EVENT_HEADER = "X-Tokenwarden-Event"
DELIVERY_HEADER = "X-Tokenwarden-Delivery"
SIGNATURE_PREFIX = "sha256="


def build_body(event: str, data: dict[str, Any], timestamp: datetime) -> bytes:
    """Compact JSON ``{"event", "timestamp", "data"}``."""
    envelope = {"event": event, "timestamp": timestamp.isoformat(), "data": data}
    return json.dumps(envelope, separators=(",", ":"), default=str).encode("utf-8")


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of *body*."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signature_header(secret: str, body: bytes) -> str:
    return SIGNATURE_PREFIX + sign_payload(secret, body)


def verify_signature(secret: str, body: bytes, header_value: str | None) -> bool:
    """Check a received signature header in constant time."""
    if not header_value:
        return False
    signature = header_value.removeprefix(SIGNATURE_PREFIX)
    return hmac.compare_digest(sign_payload(secret, body).encode(), signature.encode("utf-8"))


def build_headers(secret: str, body: bytes, event: str, delivery_id: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "User-Agent": "tokenwarden-webhooks",
        SIGNATURE_HEADER: signature_header(secret, body),
        EVENT_HEADER: event,
        DELIVERY_HEADER: delivery_id,
    }

"""Versioned HMAC-SHA256 signing for outbound and inbound webhooks.

The canonical signing string is::

    v1.<unix timestamp seconds>.<event>.<raw JSON body>

and the signature header carries ``v1=<hex digest>``. Receivers must hash the
exact bytes that went over the wire: re-serializing parsed JSON can reorder
keys or change whitespace and break the digest.
"""
from __future__ import annotations

import hmac
import json
import re
import secrets
from hashlib import sha256
from typing import Any

SIGNATURE_VERSION = "v1"

DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"
EVENT_HEADER = "X-Webhook-Event"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
SIGNATURE_HEADER = "X-Webhook-Signature"

SIGNATURE_RE = re.compile(r"^v1=([0-9a-f]{64})$")


def generate_secret() -> str:
    """Fresh 256-bit endpoint secret."""
    return secrets.token_hex(32)


def encode_body(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def canonical_string(timestamp: int | str, event: str, body: bytes) -> bytes:
    prefix = f"{SIGNATURE_VERSION}.{timestamp}.{event}.".encode("utf-8")
    return prefix + body


def compute_signature(secret: str, timestamp: int | str, event: str, body: bytes) -> str:
    return hmac.new(
        secret.encode("utf-8"), canonical_string(timestamp, event, body), sha256
    ).hexdigest()


def verify_signature(
    secret: str, timestamp: int | str, event: str, body: bytes, signature_hex: str
) -> bool:
    expected = compute_signature(secret, timestamp, event, body)
    return hmac.compare_digest(expected.encode("ascii"), signature_hex.encode("ascii"))


def build_headers(
    *, delivery_id: int | str, event: str, body: bytes, secret: str, timestamp: int
) -> dict[str, str]:
    signature = compute_signature(secret, timestamp, event, body)
    return {
        "Content-Type": "application/json",
        DELIVERY_ID_HEADER: str(delivery_id),
        EVENT_HEADER: event,
        TIMESTAMP_HEADER: str(timestamp),
        SIGNATURE_HEADER: f"{SIGNATURE_VERSION}={signature}",
    }

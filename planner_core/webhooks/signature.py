"""HMAC-SHA256 verification for inbound webhooks.

The signature covers the request body exactly as received. Bodies are never
re-serialized before hashing, so key order and whitespace chosen by the sender
are part of what is signed.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from planner_core.core.errors import WebhookSignatureError

SIGNATURE_HEADER = "x-webhook-signature"


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Return True when ``signature`` is the hex HMAC of ``body``; never raises."""

    if not signature or not secret:
        return False
    try:
        provided = bytes.fromhex(signature.strip())
    except ValueError:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected)


def require_valid_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    if not signature:
        raise WebhookSignatureError("Webhook signature missing", code="MISSING_SIGNATURE")
    if not verify_signature(body, signature, secret):
        raise WebhookSignatureError("Webhook signature invalid", code="INVALID_SIGNATURE")

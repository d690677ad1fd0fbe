"""Webhook authentication for Instagram deliveries.

Three checks live here, all pure functions with the secrets passed in:

- ``verify_signature`` authenticates a POST delivery with the
  ``x-hub-signature-256`` HMAC computed over the raw body.
- ``verify_challenge`` answers the subscription handshake
  (``hub.mode`` / ``hub.verify_token`` / ``hub.challenge``).
- ``parse_signed_request`` decodes the ``signed_request`` sent to the
  deauthorize and data-deletion callbacks.
"""

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any

from src.constants import (
    SIGNED_REQUEST_ALGORITHM,
    WEBHOOK_SIGNATURE_PREFIX,
    WEBHOOK_SUBSCRIBE_MODE,
)


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of ``raw_body`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    signature_header: str | None,
    secret: str,
) -> bool:
    """
    Check a delivery's ``x-hub-signature-256`` header.

    Args:
        raw_body: Request body exactly as received on the wire
        signature_header: Header value of the form ``sha256=<hex>``
        secret: App client secret shared with the provider

    Returns:
        True only when the header carries the digest of ``raw_body``.
        A missing header, a missing secret or a malformed digest fails
        closed instead of raising.
    """
    if not signature_header or not secret:
        return False

    if not signature_header.startswith(WEBHOOK_SIGNATURE_PREFIX):
        return False

    received = signature_header[len(WEBHOOK_SIGNATURE_PREFIX):].strip().lower()
    expected = compute_signature(raw_body, secret)

    # compare_digest needs ASCII on both sides; equal length is not required
    if not received.isascii():
        return False

    return hmac.compare_digest(received, expected)


def verify_challenge(
    mode: str | None,
    token: str | None,
    challenge: str | None,
    verify_token: str,
) -> str | None:
    """
    Answer the webhook subscription handshake.

    Returns the challenge to echo back if the mode is ``subscribe``, the
    token matches the configured verify token exactly and a challenge was
    sent. Returns None to signal rejection.
    """
    if not verify_token:
        return None

    if mode != WEBHOOK_SUBSCRIBE_MODE or token != verify_token:
        return None

    if not challenge:
        return None

    return challenge


def _b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def parse_signed_request(signed_request: str, secret: str) -> dict[str, Any] | None:
    """
    Decode and authenticate a ``signed_request`` parameter.

    The value is ``<signature>.<payload>``, both base64url encoded, where the
    signature is the HMAC-SHA256 of the encoded payload keyed with the app
    secret.

    Returns:
        The decoded payload, or None if the value is malformed or forged.
    """
    if not signed_request or not secret or signed_request.count(".") != 1:
        return None

    encoded_signature, encoded_payload = signed_request.split(".")

    try:
        signature = _b64url_decode(encoded_signature)
        payload = json.loads(_b64url_decode(encoded_payload))
    except (binascii.Error, UnicodeError, ValueError):
        return None

    if not isinstance(payload, dict):
        return None

    if str(payload.get("algorithm", "")).upper() != SIGNED_REQUEST_ALGORITHM:
        return None

    expected = hmac.new(
        secret.encode("utf-8"), encoded_payload.encode("ascii"), hashlib.sha256
    ).digest()

    if not hmac.compare_digest(signature, expected):
        return None

    return payload

"""
Webhook Security Module

Signature verification for inbound Calendly webhooks:
- Constant-time signature comparison (prevents timing attacks)
- Timestamp validation (prevents replay attacks)
- Explicit, logged opt-out when no signing key is configured
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import Request

from .exceptions import SignatureInvalid

logger = logging.getLogger(__name__)

# Calendly's header name first; the bare name is accepted for proxies that rewrite it
SIGNATURE_HEADERS = ("Calendly-Webhook-Signature", "Signature")


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_timestamp(timestamp: Optional[str], max_age: int) -> bool:
    """
    Verify webhook timestamp is within acceptable range.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum age in seconds, 0 disables the check

    Returns:
        True if timestamp is valid, False otherwise
    """
    if max_age <= 0:
        return True

    try:
        webhook_time = int(timestamp)
        current_time = int(time.time())
        age = abs(current_time - webhook_time)

        if age > max_age:
            logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
            return False

        return True
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False


def parse_signature_header(signature_header: str) -> tuple[Optional[str], Optional[str]]:
    """Split "t=<unix>,v1=<hex>" into (timestamp, digest)"""
    elements = {}
    for item in signature_header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            elements[key] = value
    return elements.get("t"), elements.get("v1")


def verify_calendly_signature(
    raw_body: bytes, signature_header: Optional[str], secret: str, tolerance_seconds: int = 0
) -> None:
    """
    Verify a Calendly webhook signature.

    Calendly signs "<t>.<raw body>" with the webhook signing key and sends
    'Calendly-Webhook-Signature: t=<unix>,v1=<hex_digest>'.

    Raises:
        SignatureInvalid: header missing, malformed, stale, or digest mismatch
    """
    if not signature_header:
        logger.warning("🚫 Calendly webhook missing signature header")
        raise SignatureInvalid("Missing webhook signature")

    timestamp, signature = parse_signature_header(signature_header)
    if not timestamp or not signature:
        logger.warning("🚫 Calendly webhook invalid signature format")
        raise SignatureInvalid("Invalid signature format")

    if not verify_timestamp(timestamp, tolerance_seconds):
        raise SignatureInvalid("Webhook timestamp expired")

    signed_payload = timestamp.encode("utf-8") + b"." + raw_body
    expected_signature = compute_hmac_sha256(secret, signed_payload)

    if not constant_time_compare(expected_signature, signature):
        logger.warning("🚫 Calendly webhook signature mismatch")
        raise SignatureInvalid("Invalid webhook signature")

    logger.debug("✅ Calendly webhook signature verified")


async def verify_calendly_webhook(
    request: Request,
    secret: Optional[str],
    allow_unsigned: bool = False,
    tolerance_seconds: int = 0,
) -> bytes:
    """
    Verify an inbound Calendly webhook request and return its raw body.

    With no signing key configured the request is only accepted when
    allow_unsigned is set, and every such request is logged as unverified.
    """
    raw_body = await request.body()

    if not secret:
        if allow_unsigned:
            logger.warning(
                "⚠️ CALENDLY_WEBHOOK_SIGNING_KEY not configured - signature verification skipped"
            )
            return raw_body
        logger.error(
            "❌ CALENDLY_WEBHOOK_SIGNING_KEY not configured and unsigned webhooks are not allowed"
        )
        raise SignatureInvalid("Webhook signing key not configured")

    signature_header = None
    for header in SIGNATURE_HEADERS:
        signature_header = request.headers.get(header)
        if signature_header:
            break

    verify_calendly_signature(raw_body, signature_header, secret, tolerance_seconds)
    return raw_body


def create_webhook_signature(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    """
    Create a Calendly-style signature header, for tests and local replay.

    Returns:
        "t=<timestamp>,v1=<hex digest>"
    """
    timestamp = int(time.time()) if timestamp is None else timestamp
    sig = compute_hmac_sha256(secret, str(timestamp).encode("utf-8") + b"." + payload)
    return f"t={timestamp},v1={sig}"

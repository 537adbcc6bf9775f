"""
HMAC-SHA256 signature verification for provider webhooks.

The provider signs the raw request body with the shared secret
(POLAR_WEBHOOK_SECRET) and sends the hex digest in X-Polar-Signature.
Comparison is constant-time.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from django.conf import settings

from billing.exceptions import InvalidSignature

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def sign(body: bytes, secret: str | None = None) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    secret = settings.POLAR_WEBHOOK_SECRET if secret is None else secret
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify(body: bytes, signature: str | None, secret: str | None = None) -> None:
    """
    Check a signature header against the raw body.

    Accepts the bare hex digest or a "sha256=<hex>" value.

    Raises:
        InvalidSignature: If the header is missing, the secret is not
            configured, or the digest does not match
    """
    secret = settings.POLAR_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        logger.error("POLAR_WEBHOOK_SECRET is not configured; rejecting webhook")
        raise InvalidSignature("Webhook secret is not configured")
    if not signature:
        raise InvalidSignature("Missing webhook signature")

    provided = signature.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    if not hmac.compare_digest(sign(body, secret).encode(), provided.lower().encode()):
        raise InvalidSignature("Webhook signature mismatch")

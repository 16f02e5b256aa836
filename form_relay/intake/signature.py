"""Typeform webhook signature verification.

Typeform signs the raw request body with HMAC-SHA256 keyed by the shared secret
and sends ``sha256=<base64 digest>`` in the ``Typeform-Signature`` header.

OPEN MODE: when no secret is configured every delivery is accepted. That is an
explicit operational switch for local development and sandboxes; the app logs a
warning at startup whenever it is active.
"""

import base64
import hashlib
import hmac

SIGNATURE_HEADER = "Typeform-Signature"
SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the signature token the sender would attach to ``body``.

    Args:
        body: Raw request body bytes
        secret: Shared signing secret

    Returns:
        ``sha256=`` followed by the base64-encoded HMAC digest
    """
    digest = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256).digest()
    return SIGNATURE_PREFIX + base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check that ``body`` was produced by the trusted sender.

    Args:
        body: Raw request body bytes, exactly as received
        signature: Value of the signature header (may be missing)
        secret: Shared signing secret; empty or None enables open mode

    Returns:
        True if the signature matches or signing is disabled
    """
    if not secret:
        return True
    if not signature:
        return False

    expected = compute_signature(body, secret)
    # Timing-safe comparison
    return hmac.compare_digest(signature.strip().encode("utf-8"), expected.encode("utf-8"))

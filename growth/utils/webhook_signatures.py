"""
Webhook signature validation - verify billing callbacks are authentic.

The billing system signs the raw request body with HMAC-SHA256 using the
shared billing_webhook_secret and sends the hex digest in X-Billing-Signature.
"""
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Billing-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def validate_hmac_sha256(
    secret: str,
    signature: str,
    body: bytes,
    header_prefix: str = "sha256=",
) -> bool:
    """
    Validate an HMAC-SHA256 signature, with or without the "sha256=" prefix.
    Returns False when either the secret or the signature is missing.
    """
    if not secret or not signature:
        return False

    sig = signature
    if sig.startswith(header_prefix):
        sig = sig[len(header_prefix):]

    expected = sign_payload(secret, body)
    return hmac.compare_digest(expected, sig.strip().lower())

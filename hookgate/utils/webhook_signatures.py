"""
Webhook signature validation - verify incoming webhooks are authentic.

Supported providers:
- Stripe: "t=<unix>,v1=<hex>" via Stripe-Signature, HMAC-SHA256 over "<t>.<body>",
  with a replay window on the timestamp; the digest is checked by the Stripe SDK
- GitHub: "sha256=<hex>" via X-Hub-Signature-256, HMAC-SHA256 over the body
- Clerk (Svix): "v1,<base64>" or "v1=<base64>" via Svix-Signature, HMAC-SHA256 over the body
- Test: plain hex HMAC-SHA256 over the body via X-Test-Signature

Every check fails closed. Digests are compared as bytes with hmac.compare_digest;
a length mismatch is rejected before the compare since length is not secret.
"""
import base64
import binascii
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import stripe

from hookgate.schemas.webhook_payloads import WebhookSource

logger = logging.getLogger(__name__)

STRIPE_TIMESTAMP_TOLERANCE_SECONDS = 300
STRIPE_SIGNATURE_HEX_LENGTH = 64
GITHUB_SIGNATURE_PREFIX = "sha256="


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    error: Optional[str] = None


def _fail(error: str) -> VerificationResult:
    return VerificationResult(valid=False, error=error)


def _hmac_sha256(secret: str, payload: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()


def constant_time_equals(expected: bytes, provided: bytes) -> bool:
    """Compare two digests without leaking where they first differ."""
    return hmac.compare_digest(expected, provided)


def _compare_digests(expected: bytes, provided: bytes) -> VerificationResult:
    if len(expected) != len(provided):
        return _fail("Invalid signature length")
    if not constant_time_equals(expected, provided):
        return _fail("Invalid signature")
    return VerificationResult(valid=True)


def _parse_key_value_header(header: str) -> dict[str, list[str]]:
    """Parse "k1=v1,k2=v2" into {k: [values]}; repeated keys are kept in order."""
    pairs: dict[str, list[str]] = {}
    for element in header.split(","):
        key, sep, value = element.partition("=")
        key, value = key.strip(), value.strip()
        if sep and key and value:
            pairs.setdefault(key, []).append(value)
    return pairs


def verify_stripe_signature(
    payload: bytes,
    signature: str,
    secret: str,
    tolerance_seconds: int = STRIPE_TIMESTAMP_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> VerificationResult:
    """
    Verify a Stripe-Signature header against the raw body.

    The replay window is enforced here in both directions; the digest
    comparison is left to the Stripe SDK.
    """
    if not signature:
        return _fail("Missing Stripe-Signature header")
    if not secret:
        return _fail("Stripe webhook secret not configured")

    pairs = _parse_key_value_header(signature)
    timestamps = pairs.get("t")
    candidates = pairs.get("v1")
    if not timestamps or not candidates:
        return _fail("Invalid Stripe-Signature header format")

    try:
        timestamp = int(timestamps[0])
    except ValueError:
        return _fail("Invalid Stripe-Signature timestamp")

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        return _fail("Webhook timestamp outside tolerance")

    if not any(len(candidate) == STRIPE_SIGNATURE_HEX_LENGTH for candidate in candidates):
        return _fail("Invalid signature length")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        return _fail("Invalid payload encoding")

    try:
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance=None)
    except stripe.SignatureVerificationError as e:
        logger.warning("Stripe signature rejected: %s", str(e))
        return _fail("Invalid signature")
    return VerificationResult(valid=True)


def verify_github_signature(payload: bytes, signature: str, secret: str) -> VerificationResult:
    """Verify an X-Hub-Signature-256 header against the raw body."""
    if not signature:
        return _fail("Missing X-Hub-Signature-256 header")
    if not secret:
        return _fail("GitHub webhook secret not configured")
    if not signature.startswith(GITHUB_SIGNATURE_PREFIX):
        return _fail("Invalid GitHub signature format")

    try:
        provided = bytes.fromhex(signature[len(GITHUB_SIGNATURE_PREFIX):])
    except ValueError:
        return _fail("Invalid signature encoding")

    return _compare_digests(_hmac_sha256(secret, payload), provided)


def _svix_candidates(signature: str) -> list[str]:
    """
    Extract v1 signatures from a Svix-Signature header.
    Accepts the native space-separated "v1,<sig>" list as well as "v1=<sig>" pairs.
    """
    native = [
        token[len("v1,"):]
        for token in signature.split()
        if token.startswith("v1,")
    ]
    if native:
        return native
    return _parse_key_value_header(signature).get("v1", [])


def verify_clerk_signature(payload: bytes, signature: str, secret: str) -> VerificationResult:
    """Verify a Svix-Signature header against the raw body."""
    if not signature:
        return _fail("Missing Svix-Signature header")
    if not secret:
        return _fail("Clerk webhook secret not configured")

    candidates = _svix_candidates(signature)
    if not candidates:
        return _fail("Invalid Svix-Signature format")

    expected = _hmac_sha256(secret, payload)

    result = _fail("Invalid signature")
    for candidate in candidates:
        try:
            provided = base64.b64decode(candidate, validate=True)
        except (binascii.Error, ValueError):
            result = _fail("Invalid signature encoding")
            continue
        result = _compare_digests(expected, provided)
        if result.valid:
            return result
    return result


def verify_test_signature(payload: bytes, signature: str, secret: str) -> VerificationResult:
    """Verify an X-Test-Signature header (plain hex HMAC-SHA256 of the body)."""
    if not signature:
        return _fail("Missing X-Test-Signature header")
    if not secret:
        return _fail("Test webhook secret not configured")

    try:
        provided = bytes.fromhex(signature.strip())
    except ValueError:
        return _fail("Invalid signature encoding")

    return _compare_digests(_hmac_sha256(secret, payload), provided)


_VERIFIERS: dict[WebhookSource, Callable[[bytes, str, str], VerificationResult]] = {
    WebhookSource.GITHUB: verify_github_signature,
    WebhookSource.CLERK: verify_clerk_signature,
    WebhookSource.TEST: verify_test_signature,
}


def verify_signature(
    raw_body: bytes,
    signature_header: str,
    secret: str,
    source: WebhookSource,
    tolerance_seconds: int = STRIPE_TIMESTAMP_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> VerificationResult:
    """
    Verify a provider signature over the exact bytes received.
    Never raises: unexpected errors are reported as an invalid signature.
    """
    try:
        if source == WebhookSource.STRIPE:
            return verify_stripe_signature(
                raw_body, signature_header, secret, tolerance_seconds, now,
            )
        verifier = _VERIFIERS.get(source)
        if verifier is None:
            return _fail(f"Unknown webhook source: {source}")
        return verifier(raw_body, signature_header, secret)
    except Exception as e:
        logger.error("Signature verification error for %s: %s", source, str(e))
        return _fail(f"Signature verification error: {e}")


def generate_signature_header(
    source: WebhookSource,
    raw_body: bytes,
    secret: str,
    timestamp: Optional[int] = None,
) -> str:
    """Build a header value that verify_signature accepts for the given source."""
    if source == WebhookSource.STRIPE:
        ts = int(time.time()) if timestamp is None else timestamp
        digest = _hmac_sha256(secret, f"{ts}.".encode("utf-8") + raw_body).hex()
        return f"t={ts},v1={digest}"
    digest = _hmac_sha256(secret, raw_body)
    if source == WebhookSource.GITHUB:
        return f"{GITHUB_SIGNATURE_PREFIX}{digest.hex()}"
    if source == WebhookSource.CLERK:
        return f"v1,{base64.b64encode(digest).decode('ascii')}"
    return digest.hex()


def compute_payload_hash(body: bytes) -> str:
    """Compute SHA-256 hash of raw payload for audit."""
    return hashlib.sha256(body).hexdigest()

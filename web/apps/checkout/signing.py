"""Integrity and webhook signatures exchanged with the payment gateway."""

import hashlib
import hmac
import string

_HEX = frozenset(string.hexdigits)


def _sha256_hex(*parts) -> str:
    h = hashlib.sha256()
    for part in parts:
        h.update(part if isinstance(part, bytes) else str(part).encode("utf-8"))
    return h.hexdigest()


def integrity_signature(reference: str, amount_in_cents: int, currency: str, secret: str) -> str:
    """SHA-256 hex of ``reference + amount_in_cents + currency + secret``."""
    return _sha256_hex(reference, amount_in_cents, currency, secret)


def webhook_signature(raw_body: bytes, timestamp: str, secret: str) -> str:
    """SHA-256 hex of ``raw_body + timestamp + secret``."""
    return _sha256_hex(raw_body, timestamp, secret)


def verify_webhook_signature(raw_body: bytes, signature: str | None, timestamp: str | None, secret: str) -> bool:
    """Check an inbound webhook signature in constant time.

    Missing headers or a value that is not a 64-char hex digest fail fast.
    """
    if not signature or not timestamp or not secret:
        return False
    signature = signature.strip().lower()
    if len(signature) != 64 or not set(signature) <= _HEX:
        return False
    expected = webhook_signature(raw_body, timestamp, secret)
    return hmac.compare_digest(expected, signature)

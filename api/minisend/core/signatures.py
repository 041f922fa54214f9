"""HMAC-SHA256 signatures for provider webhooks."""
import hashlib
import hmac
from typing import Optional, Union

SIGNATURE_PREFIX = "sha256="


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode() if isinstance(value, str) else value


def compute_signature(payload: Union[str, bytes], secret: str) -> str:
    """Return the lowercase hex HMAC-SHA256 of ``payload`` keyed with ``secret``."""

    return hmac.new(_as_bytes(secret), _as_bytes(payload), hashlib.sha256).hexdigest()


def verify_signature(
    payload: Union[str, bytes],
    signature: Optional[str],
    secret: Optional[str],
) -> bool:
    """Check a header-supplied signature against the raw request body.

    Accepts both ``<hex>`` and ``sha256=<hex>``. Returns ``False`` rather than
    raising when the signature or secret is missing.
    """

    if not signature or not secret:
        return False
    candidate = signature.strip()
    if candidate.lower().startswith(SIGNATURE_PREFIX):
        candidate = candidate[len(SIGNATURE_PREFIX):]
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(candidate.lower().encode(), expected.encode())

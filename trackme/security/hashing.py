"""
Deterministic HMAC-SHA256 helpers.

OAuth tokens are stored encrypted, which makes them unsearchable; a keyed
fingerprint stored next to each ciphertext lets the revocation webhook find
the integration a token belongs to without decrypting every row.
"""

from __future__ import annotations

import hashlib
import hmac

from trackme.config import settings

SECRET_MIN_LENGTH = 16  # catch obvious misconfiguration

__all__ = [
    "HashingError",
    "compute_hmac",
    "hash_oauth_token",
]


class HashingError(RuntimeError):
    """Raised when hashing prerequisites are not satisfied."""


def _secret_bytes() -> bytes:
    secret = getattr(settings, "HASHING_SECRET", None)
    if not secret:
        raise HashingError("HASHING_SECRET is not configured")
    if len(secret) < SECRET_MIN_LENGTH:
        raise HashingError("HASHING_SECRET is too short; please rotate it")
    return secret.encode("utf-8")


def compute_hmac(value: str, *, namespace: str) -> str:
    """
    Compute a namespaced hex HMAC-SHA256 digest.

    Args:
        value: Raw string value to hash (will be normalized by caller).
        namespace: Logical namespace/salt to avoid cross-field collisions.
    """
    payload = value or ""
    scoped = f"{namespace}:{payload}"
    digest = hmac.new(_secret_bytes(), scoped.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def hash_oauth_token(token: str | None) -> str | None:
    """Fingerprint an OAuth access or refresh token; None stays None."""
    if not token:
        return None
    return compute_hmac(token.strip(), namespace="oauth_token")

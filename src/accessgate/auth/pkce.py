"""PKCE helpers (RFC 7636), S256 only.

``plain`` is rejected: it sends the verifier itself as the challenge and
offers no protection against an intercepted authorization code.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

__all__ = ["generate_code_verifier", "generate_code_challenge", "verify_code_challenge"]

SUPPORTED_METHODS = frozenset({"S256"})


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """256 bits of randomness, base64url without padding (43 chars)."""
    return _b64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    """``base64url(SHA256(ascii(verifier)))``."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def verify_code_challenge(verifier: str, challenge: str, method: str = "S256") -> bool:
    if method not in SUPPORTED_METHODS:
        return False
    if not verifier or not challenge:
        return False
    try:
        expected = generate_code_challenge(verifier).encode("ascii")
        provided = challenge.encode("ascii")
    except (UnicodeEncodeError, AttributeError):
        return False
    if len(expected) != len(provided):
        return False
    return hmac.compare_digest(expected, provided)

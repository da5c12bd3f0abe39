"""
PKCE (RFC 7636) helpers. The challenge method is always S256.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

CODE_CHALLENGE_METHOD = "S256"


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """32 random bytes, base64url-encoded without padding (43 characters)."""
    return _base64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    """base64url(SHA-256(verifier)) without padding."""
    return _base64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    """Random opaque value binding a callback to the request that caused it."""
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str
    method: str = CODE_CHALLENGE_METHOD

    @classmethod
    def generate(cls) -> "PKCEPair":
        verifier = generate_code_verifier()
        return cls(verifier=verifier, challenge=generate_code_challenge(verifier))

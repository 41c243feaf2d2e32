"""PKCE (RFC 7636) helpers.

Only the ``S256`` method is supported; ``plain`` is rejected.
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets

from tokenwarden.oauth2.constants import (
    CODE_CHALLENGE_METHOD_S256,
    PKCE_MAX_LENGTH,
    PKCE_MIN_LENGTH,
)

# unreserved = ALPHA / DIGIT / "-" / "." / "_" / "~"
_UNRESERVED = re.compile(rf"^[A-Za-z0-9\-._~]{{{PKCE_MIN_LENGTH},{PKCE_MAX_LENGTH}}}$")


def is_well_formed(value: str | None) -> bool:
    """True if *value* is a syntactically valid code verifier or challenge."""
    return bool(value) and _UNRESERVED.match(value) is not None


def compute_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(verifier: str, challenge: str, method: str = CODE_CHALLENGE_METHOD_S256) -> bool:
    """Check a verifier against the stored challenge. Exact match only."""
    if method != CODE_CHALLENGE_METHOD_S256:
        return False
    if not is_well_formed(verifier):
        return False
    return secrets.compare_digest(compute_challenge(verifier), challenge)


def generate_pkce_pair() -> tuple[str, str]:
    """Return ``(code_verifier, code_challenge)``."""
    verifier = secrets.token_urlsafe(64)[:PKCE_MAX_LENGTH]
    return verifier, compute_challenge(verifier)

# Random credential generation and one-way hashing.
# Created: 2026-03-02
#
# Client secrets, authorization codes and refresh tokens are stored only as
# sha256 hex digests; the plaintext is handed to the caller once.

from __future__ import annotations

import hashlib
import hmac
import secrets
import string

_ALPHABET = string.ascii_letters + string.digits


def generate_random_string(length: int) -> str:
    """Alphanumeric string from the OS CSPRNG."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def hash_secret(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def verify_secret(value: str, hashed: str) -> bool:
    """Constant-time comparison of *value* against a stored sha256 digest."""
    if not value or not hashed:
        return False
    return hmac.compare_digest(hash_secret(value), hashed)

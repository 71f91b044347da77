"""
Passcode generation and hashing.

Plaintext codes only ever leave this module towards the mailer; the
ledgers keep the SHA-256 hex digest.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets


def generate_code(length: int = 6) -> str:
    """Return a uniformly random numeric code of *length* digits."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def codes_match(digest: str, candidate_digest: str) -> bool:
    """Constant-time comparison of two hex digests."""
    return hmac.compare_digest(digest, candidate_digest)


def normalize_identity(identity: str) -> str:
    """Canonical map key for a contact address (trimmed, lowercased)."""
    return identity.strip().lower()

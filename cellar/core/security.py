"""Security helpers for the PIN gate (hashing and verification)."""

from __future__ import annotations

import hashlib
import secrets

from argon2 import PasswordHasher, exceptions as argon_exc

_ph = PasswordHasher()
_PREFIX = "argon2$"


def hash_pin(pin: str) -> str:
    """Create an Argon2 hash with a prefix so it can live in SITE_PIN."""
    hashed = _ph.hash(pin)
    return f"{_PREFIX}{hashed}"


def verify_pin(pin: str, allowed: str | None) -> bool:
    """Compare a submitted PIN with one allowlist entry (hashed or plain)."""
    stored = allowed or ""
    if not stored or not pin:
        return False
    if stored.startswith(_PREFIX):
        hashed = stored[len(_PREFIX) :]
        try:
            return _ph.verify(hashed, pin)
        except (argon_exc.VerifyMismatchError, argon_exc.VerificationError, argon_exc.InvalidHashError):
            return False
    return secrets.compare_digest(stored.encode(), pin.encode())


def cookie_token(entry: str, salt: str) -> str:
    """Salted SHA-256 token stored in the pin cookie for an allowlist entry."""
    return hashlib.sha256(f"{entry}:{salt}".encode()).hexdigest()

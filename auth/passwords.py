"""
auth/passwords.py -- bcrypt hashing and verification of user passwords.

bcrypt is used directly (no passlib wrapper). The work factor is a module
constant, not a per-call argument: every hash written by this deployment has
the same cost, and bcrypt embeds it in the hash so verification of older
hashes keeps working if the constant is raised later.

Verification goes through bcrypt.checkpw only. It recomputes the hash and
compares in constant time; never replace it with `==` on bytes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

BCRYPT_ROUNDS = 10

# bcrypt only looks at the first 72 bytes of the secret. Longer inputs are
# rejected rather than silently truncated.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int = BCRYPT_ROUNDS) -> bytes:
    """Return a salted bcrypt hash of plain.

    Raises ValueError if the encoded password exceeds 72 bytes or the
    work factor is out of range. Callers treat this as fatal for the request.
    """
    secret = plain.encode("utf-8")
    if len(secret) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password length exceeds {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=rounds))


def verify_password(plain: str, hashed: bytes) -> bool:
    """Return True if plain matches hashed, False otherwise.

    A malformed stored hash or an over-long candidate is a mismatch, not an
    error: the only outcomes are match and no match.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed)
    except ValueError:
        return False

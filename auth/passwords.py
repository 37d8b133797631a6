"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

The cost factor is a constructor argument (Settings.bcrypt_rounds, default 10)
so tests can run at the bcrypt minimum of 4 without touching production code.
"""

from __future__ import annotations

import bcrypt


class PasswordHasher:
    """One-way salted hashing with constant-time verification."""

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash. Verified when a username does not
        # exist so the response time matches a wrong-password attempt.
        self.dummy_hash: str = self.hash("adminconsole_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        bcrypt only looks at the first 72 bytes. The API layer caps passwords
        at 72 characters of input so nothing is silently truncated for ASCII.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the hash.

        A malformed stored hash (bcrypt raises ValueError) counts as a
        mismatch rather than an error.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

"""
auth/tokens.py -- Stateless session tokens (JWT, HS256 via python-jose).

Security design decisions:
  Tokens are signed with the application SECRET_KEY and carry user_id,
  username (as the "sub" claim), role, issue time, and expiry. Verification
  returns None on any failure -- the access control gate turns that into 401.

  The secret is passed to TokenCodec at construction. api/main.py builds one
  codec per process from Settings; tests build their own with a throwaway key.

  There is no revocation list. A leaked token stays valid until "exp". That
  is the price of not needing a shared session store; keep the expiry short
  enough to live with it.

Layer rule: no imports from api/. Imports from core/ are allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import ROLES, Identity

logger = logging.getLogger("adminconsole.auth")

_ALGORITHM = "HS256"
_DEFAULT_EXPIRE_SECONDS = 24 * 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Issues and verifies signed identity assertions.

    Usage:
        codec = TokenCodec(settings.secret_key)
        token = codec.issue(user.id, user.username, user.role)
        identity = codec.verify(token)   # Identity or None
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = _DEFAULT_EXPIRE_SECONDS,
        algorithm: str = _ALGORITHM,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._algorithm = algorithm
        self._clock = clock

    def issue(self, user_id: str, username: str, role: str) -> str:
        """Encode a signed JWT that expires expire_seconds from now."""
        now = self._clock()
        payload = {
            "sub": username,
            "user_id": user_id,
            "role": role,
            "iat": now,
            "exp": now + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> Identity | None:
        """Decode and verify a JWT. Returns the Identity or None on any failure.

        Bad signature, garbage input, expired "exp", a missing claim, or a role
        outside the closed set all come back as None. Never raises.

        Expiry is checked here against the injected clock, not inside jose, so
        issue() and verify() agree on what "now" is. A token is expired once
        now >= exp.
        """
        try:
            payload = jwt.decode(
                token, self._secret_key, algorithms=[self._algorithm], options={"verify_exp": False}
            )
        except JWTError:
            return None
        except (TypeError, ValueError, AttributeError):
            # Non-string input or structurally broken segments.
            logger.debug("Rejected malformed session token")
            return None

        user_id = payload.get("user_id")
        username = payload.get("sub")
        role = payload.get("role")
        if not isinstance(user_id, str) or not isinstance(username, str) or role not in ROLES:
            return None
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            return None
        if self._clock().timestamp() >= exp:
            return None
        return Identity(user_id=user_id, username=username, role=role)

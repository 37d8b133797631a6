"""
auth/reset.py -- Password reset token lifecycle.

State machine per token:  issued -> used | expired  (both terminal)
  - used:    set by a successful complete_reset(), or by a newer
             request_reset() for the same user superseding it.
  - expired: derived, never stored -- now >= expires_at while used_at is NULL.

Security design decisions:
  Token values come from secrets.token_hex(32): 256 bits of entropy, so
  guessing one inside its one-hour window is infeasible.

  request_reset() answers the same way for known and unknown emails. The
  route always returns {"success": true}; only DEBUG mode echoes the token
  back, standing in for the email that a production deployment would send.

  complete_reset() hands the password change and the token consumption to
  UserStore.consume_reset_token(), which does both in one transaction. A
  failed password write leaves the token unused so the user can retry.

Token values are never logged in full; log lines carry an 8-char prefix.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.audit import AuditTrail
from auth.models import AuditAction, PasswordResetToken
from auth.passwords import PasswordHasher
from auth.store import UserStore
from core.errors import InvalidOrExpiredToken

logger = logging.getLogger("adminconsole.reset")

_DEFAULT_EXPIRE_SECONDS = 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_reset_token() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


class PasswordResetManager:
    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        audit: AuditTrail,
        expire_seconds: int = _DEFAULT_EXPIRE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._audit = audit
        self.expire_seconds = expire_seconds
        self._clock = clock

    def request_reset(self, email: str, ip_address: Optional[str] = None) -> Optional[str]:
        """Issue a fresh reset token for the account with this email.

        Returns the token value, or None when no account matches. An unknown
        email is not an error: nothing is created and nothing is raised.
        Every older unused token for the user is marked used first, so at
        most one token per user is valid at a time.
        """
        user = self._store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return None

        now = self._clock()
        superseded = self._store.invalidate_user_reset_tokens(user.id, used_at=now)
        token = generate_reset_token()
        self._store.create_reset_token(
            PasswordResetToken(
                user_id=user.id,
                token=token,
                expires_at=now + timedelta(seconds=self.expire_seconds),
                created_at=now,
            )
        )
        logger.info(
            "Issued reset token %s... for user_id=%s (superseded %d)",
            token[:8],
            user.id,
            superseded,
        )
        self._audit.record(
            AuditAction.PASSWORD_RESET_REQUEST,
            actor_name=user.username,
            actor_id=user.id,
            target_id=user.id,
            target_name=user.username,
            ip_address=ip_address,
        )
        return token

    def _valid_token(self, token: str) -> PasswordResetToken | None:
        if not token:
            return None
        reset = self._store.get_reset_token(token)
        if reset is None or not reset.is_valid(self._clock()):
            return None
        return reset

    def verify_token(self, token: str) -> bool:
        """True iff the token exists, is unused, and has not expired."""
        return self._valid_token(token) is not None

    def complete_reset(self, token: str, new_password: str, ip_address: Optional[str] = None) -> None:
        """Set a new password using a reset token, consuming the token.

        Raises InvalidOrExpiredToken for unknown, used, superseded, or expired
        tokens -- replaying a token that already worked fails the same way.
        """
        reset = self._valid_token(token)
        if reset is None:
            raise InvalidOrExpiredToken()

        hashed = self._hasher.hash(new_password)
        if not self._store.consume_reset_token(reset.id, reset.user_id, hashed, now=self._clock()):
            # Lost a race with a concurrent submission or superseding request.
            raise InvalidOrExpiredToken()

        user = self._store.get_by_id(reset.user_id)
        username = user.username if user is not None else reset.user_id
        logger.info("Password reset completed for user_id=%s", reset.user_id)
        self._audit.record(
            AuditAction.PASSWORD_RESET_COMPLETE,
            actor_name=username,
            actor_id=reset.user_id,
            target_id=reset.user_id,
            target_name=username,
            ip_address=ip_address,
        )

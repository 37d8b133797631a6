"""
auth/service.py -- Username/password login.

AuthService.login() is the only place credentials are checked. It always runs
bcrypt, whether or not the username exists, so neither the error nor the
response time tells a caller which half of the pair was wrong:
  - Unknown username: bcrypt runs against PasswordHasher.dummy_hash
  - Wrong password:   bcrypt runs against the stored hash
Both paths end at the same `raise InvalidCredentials()`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from auth.audit import AuditTrail
from auth.models import AuditAction, PublicUser
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.errors import InvalidCredentials

logger = logging.getLogger("adminconsole.auth")


@dataclass(frozen=True)
class LoginResult:
    token: str
    user: PublicUser


class AuthService:
    def __init__(self, store: UserStore, hasher: PasswordHasher, codec: TokenCodec, audit: AuditTrail) -> None:
        self._store = store
        self._hasher = hasher
        self._codec = codec
        self._audit = audit

    def login(self, username: str, password: str, ip_address: Optional[str] = None) -> LoginResult:
        """Verify credentials and issue a session token.

        Raises InvalidCredentials for an unknown username and for a wrong
        password alike. Records a login audit entry on success only.
        """
        user = self._store.get_by_username(username)
        stored_hash = user.hashed_password if user is not None else self._hasher.dummy_hash
        password_ok = self._hasher.verify(password, stored_hash)
        if user is None or not password_ok:
            logger.info("Failed login attempt from %s", ip_address or "unknown")
            raise InvalidCredentials()

        public = user.public()
        token = self._codec.issue(public.id, public.username, public.role)
        self._audit.record(
            AuditAction.LOGIN,
            actor_name=public.username,
            actor_id=public.id,
            target_id=public.id,
            target_name=public.username,
            ip_address=ip_address,
        )
        return LoginResult(token=token, user=public)

"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Stores and
services do the work. The one exception is PasswordResetToken.state(), which
keeps the reset-token state machine in a single place so the store, the
lifecycle manager, and the tests all agree on what "valid" means.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_USER)


class AuditAction(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET_COMPLETE = "password_reset_complete"
    PROFILE_UPDATE = "profile_update"
    PASSWORD_CHANGE = "password_change"


class ResetTokenState(str, Enum):
    ISSUED = "issued"
    USED = "used"
    EXPIRED = "expired"


@dataclass
class User:
    """A stored account, including its bcrypt hash.

    Never returned from an HTTP route. Use public() to get the outward shape.
    """

    username: str
    email: str
    name: str
    hashed_password: str
    role: str = ROLE_USER
    id: Optional[str] = None
    created_at: Optional[str] = None

    def public(self) -> PublicUser:
        return PublicUser(
            id=self.id or "",
            username=self.username,
            email=self.email,
            name=self.name,
            role=self.role,
            created_at=self.created_at or "",
        )


@dataclass(frozen=True)
class PublicUser:
    """Outward-facing user. There is no password field to forget to strip."""

    id: str
    username: str
    email: str
    name: str
    role: str
    created_at: str


@dataclass(frozen=True)
class Identity:
    """The decoded contents of a verified session token.

    Attached to request.state.identity by the access control gate.
    """

    user_id: str
    username: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass
class PasswordResetToken:
    """A single-use, time-bound password reset credential.

    Lifecycle: issued -> used | expired (both terminal). "expired" is never
    stored; it is derived from expires_at whenever used_at is still empty.
    """

    user_id: str
    token: str
    expires_at: datetime
    id: Optional[str] = None
    used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def state(self, now: datetime) -> ResetTokenState:
        if self.used_at is not None:
            return ResetTokenState.USED
        if now >= self.expires_at:
            return ResetTokenState.EXPIRED
        return ResetTokenState.ISSUED

    def is_valid(self, now: datetime) -> bool:
        return self.state(now) is ResetTokenState.ISSUED


@dataclass
class AuditLog:
    """One immutable entry in the audit trail."""

    actor_name: str
    action: AuditAction
    actor_id: Optional[str] = None
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    details: Optional[str] = None
    ip_address: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None

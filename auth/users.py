"""
auth/users.py -- Account administration and profile self-service.

Admin operations (create, update, delete, list) are only reachable through
routes guarded by require_admin; this module does not re-check the role.
It does enforce the account invariants that no guard can:
  - username and email are unique (Conflict),
  - an admin cannot delete their own account,
  - the last remaining admin cannot be demoted (no recovery path without
    direct database access).

Profile self-service changes the caller's own name/email, and the password
only when BOTH current_password and new_password are supplied. Supplying
exactly one of them is a ValidationError, never a silent partial update.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.audit import AuditTrail
from auth.models import ROLE_ADMIN, AuditAction, Identity, PublicUser, User
from auth.passwords import PasswordHasher
from auth.store import UserStore
from core.errors import Conflict, NotFound, ValidationError

logger = logging.getLogger("adminconsole.auth")


class UserService:
    def __init__(self, store: UserStore, hasher: PasswordHasher, audit: AuditTrail) -> None:
        self._store = store
        self._hasher = hasher
        self._audit = audit

    # ------------------------------------------------------------------
    # Uniqueness helpers
    # ------------------------------------------------------------------

    def _check_username_free(self, username: str, exclude_id: Optional[str] = None) -> None:
        existing = self._store.get_by_username(username)
        if existing is not None and existing.id != exclude_id:
            raise Conflict("Username already exists.")

    def _check_email_free(self, email: str, exclude_id: Optional[str] = None) -> None:
        existing = self._store.get_by_email(email)
        if existing is not None and existing.id != exclude_id:
            raise Conflict("Email already exists.")

    def _require(self, user_id: str) -> User:
        user = self._store.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def list_users(self) -> list[PublicUser]:
        return [u.public() for u in self._store.list_users()]

    def create_user(
        self,
        actor: Identity,
        username: str,
        email: str,
        password: str,
        name: str,
        role: str,
        ip_address: Optional[str] = None,
    ) -> PublicUser:
        self._check_username_free(username)
        self._check_email_free(email)

        new_user = User(
            username=username,
            email=email,
            name=name,
            role=role,
            hashed_password=self._hasher.hash(password),
        )
        try:
            user_id = self._store.create_user(new_user)
        except IntegrityError as exc:
            # A concurrent request took the username or email after our check.
            raise Conflict("Username or email already exists.") from exc

        created = self._require(user_id)
        self._audit.record(
            AuditAction.CREATE_USER,
            actor_name=actor.username,
            actor_id=actor.user_id,
            target_id=user_id,
            target_name=username,
            details=f"role={role}",
            ip_address=ip_address,
        )
        return created.public()

    def update_user(
        self,
        actor: Identity,
        user_id: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        name: Optional[str] = None,
        role: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> PublicUser:
        target = self._require(user_id)
        updates: dict = {}

        if username is not None and username != target.username:
            self._check_username_free(username, exclude_id=user_id)
            updates["username"] = username
        if email is not None and email != target.email:
            self._check_email_free(email, exclude_id=user_id)
            updates["email"] = email
        if name is not None and name != target.name:
            updates["name"] = name
        if role is not None and role != target.role:
            if target.role == ROLE_ADMIN and self._store.count_users(role=ROLE_ADMIN) <= 1:
                raise ValidationError.for_field("role", "Cannot demote the last admin account.")
            updates["role"] = role
        if password is not None:
            updates["hashed_password"] = self._hasher.hash(password)

        if updates:
            try:
                self._store.update_user(user_id, **updates)
            except IntegrityError as exc:
                raise Conflict("Username or email already exists.") from exc
            changed = sorted("password" if k == "hashed_password" else k for k in updates)
            self._audit.record(
                AuditAction.UPDATE_USER,
                actor_name=actor.username,
                actor_id=actor.user_id,
                target_id=user_id,
                target_name=updates.get("username", target.username),
                details="changed: " + ", ".join(changed),
                ip_address=ip_address,
            )
        return self._require(user_id).public()

    def delete_user(self, actor: Identity, user_id: str, ip_address: Optional[str] = None) -> None:
        if actor.user_id == user_id:
            raise ValidationError("Cannot delete your own account.")
        target = self._require(user_id)
        if not self._store.delete_user(user_id):
            raise NotFound("User not found.")
        self._audit.record(
            AuditAction.DELETE_USER,
            actor_name=actor.username,
            actor_id=actor.user_id,
            target_id=user_id,
            target_name=target.username,
            ip_address=ip_address,
        )

    # ------------------------------------------------------------------
    # Profile self-service
    # ------------------------------------------------------------------

    def get_profile(self, identity: Identity) -> PublicUser:
        return self._require(identity.user_id).public()

    def update_profile(
        self,
        identity: Identity,
        name: Optional[str] = None,
        email: Optional[str] = None,
        current_password: Optional[str] = None,
        new_password: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> PublicUser:
        """Update the caller's own profile.

        Password rules:
          neither field          -> password untouched
          both fields            -> current verified, then new one hashed
          exactly one field      -> ValidationError, nothing is written
        """
        if bool(current_password) != bool(new_password):
            missing = "current_password" if new_password else "new_password"
            raise ValidationError.for_field(
                missing, "Both current and new password are required to change the password."
            )

        user = self._require(identity.user_id)
        updates: dict = {}

        if name and name != user.name:
            updates["name"] = name
        if email and email != user.email:
            self._check_email_free(email, exclude_id=user.id)
            updates["email"] = email

        password_changed = False
        if current_password and new_password:
            if not self._hasher.verify(current_password, user.hashed_password):
                raise ValidationError.for_field("current_password", "Current password is incorrect.")
            updates["hashed_password"] = self._hasher.hash(new_password)
            password_changed = True

        if not updates:
            return user.public()

        try:
            self._store.update_user(user.id, **updates)
        except IntegrityError as exc:
            raise Conflict("Email already exists.") from exc

        profile_fields = sorted(k for k in updates if k != "hashed_password")
        if profile_fields:
            self._audit.record(
                AuditAction.PROFILE_UPDATE,
                actor_name=user.username,
                actor_id=user.id,
                target_id=user.id,
                target_name=user.username,
                details="changed: " + ", ".join(profile_fields),
                ip_address=ip_address,
            )
        if password_changed:
            self._audit.record(
                AuditAction.PASSWORD_CHANGE,
                actor_name=user.username,
                actor_id=user.id,
                target_id=user.id,
                target_name=user.username,
                ip_address=ip_address,
            )
        return self._require(user.id).public()

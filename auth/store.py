"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_reset_token /
_row_to_audit_log are the mappers. Service and route code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Username and email uniqueness are enforced by UNIQUE constraints. Services
  check first for a friendly error, and still treat IntegrityError as a
  conflict because two concurrent creates can both pass the check.

  password_reset_tokens.user_id cascades on user delete. SQLite ignores
  foreign keys unless PRAGMA foreign_keys=ON is set on every connection,
  which _set_sqlite_pragmas does.

Timestamps are stored as fixed-width UTC ISO-8601 strings (microsecond
precision) so lexical order in SQL equals chronological order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, ForeignKey, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine, make_url

from auth.models import AuditAction, AuditLog, PasswordResetToken, User

logger = logging.getLogger("adminconsole.store")

_DEFAULT_DB_URL = "sqlite:///data/adminconsole.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default="user"),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),  # NULL until consumed or superseded
    Column("created_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("actor_id", String(36)),  # no FK: entries outlive the accounts they mention
    Column("actor_name", String(255), nullable=False),
    Column("action", String(40), nullable=False),
    Column("target_id", String(36)),
    Column("target_name", String(255)),
    Column("details", Text),
    Column("ip_address", String(45)),
    Column("created_at", String(32), nullable=False, index=True),
)

# Columns update_user() is allowed to touch. Anything else is a caller bug.
_USER_UPDATABLE = {"username", "email", "name", "role", "hashed_password"}


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on each new SQLite connection.

    SQLite PRAGMAs are per-connection and are not inherited from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _new_id() -> str:
    return str(uuid.uuid4())


def _ensure_sqlite_dir(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    database = make_url(db_url).database
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, PasswordResetToken, and AuditLog entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(username="admin", email="a@x.io", name="A", hashed_password=h))
        user = store.get_by_username("admin")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            _ensure_sqlite_dir(db_url)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email is taken.
        """
        user_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    name=user.name,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: username, email, name, role, hashed_password.
        Unknown keys raise ValueError. Returns True if a row was updated.
        """
        unknown = set(fields) - _USER_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user. Reset tokens go with it (ON DELETE CASCADE)."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def count_users(self, role: Optional[str] = None, since: Optional[datetime] = None) -> int:
        """Count users, optionally filtered by role and/or created_at >= since."""
        query = select(func.count()).select_from(_users)
        if role is not None:
            query = query.where(_users.c.role == role)
        if since is not None:
            query = query.where(_users.c.created_at >= _iso(since))
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_reset_token(self, reset: PasswordResetToken) -> str:
        """Insert a reset token row and return its ID."""
        token_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _reset_tokens.insert().values(
                    id=token_id,
                    user_id=reset.user_id,
                    token=reset.token,
                    expires_at=_iso(reset.expires_at),
                    used_at=None,
                    created_at=_iso(reset.created_at) if reset.created_at else _now_iso(),
                )
            )
            conn.commit()
        return token_id

    def get_reset_token(self, token: str) -> PasswordResetToken | None:
        """Look up a reset token by value, whatever its state."""
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.token == token)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def list_reset_tokens(self, user_id: str) -> list[PasswordResetToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _reset_tokens.select()
                .where(_reset_tokens.c.user_id == user_id)
                .order_by(_reset_tokens.c.created_at)
            ).fetchall()
        return [_row_to_reset_token(r) for r in rows]

    def invalidate_user_reset_tokens(self, user_id: str, used_at: datetime) -> int:
        """Mark every unused token for the user as used. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _reset_tokens.update()
                .where((_reset_tokens.c.user_id == user_id) & (_reset_tokens.c.used_at.is_(None)))
                .values(used_at=_iso(used_at))
            )
            conn.commit()
        return result.rowcount

    def consume_reset_token(self, token_id: str, user_id: str, hashed_password: str, now: datetime) -> bool:
        """Mark the token used and set the new password in one transaction.

        The token update only matches while used_at IS NULL and the token is
        unexpired, so two concurrent submissions of the same token cannot both
        win. If either update matches no row, or anything raises, both changes
        are rolled back and the token stays usable.
        """
        stamp = _iso(now)
        with self.engine.connect() as conn:
            with conn.begin() as trans:
                claimed = conn.execute(
                    _reset_tokens.update()
                    .where(
                        (_reset_tokens.c.id == token_id)
                        & (_reset_tokens.c.used_at.is_(None))
                        & (_reset_tokens.c.expires_at > stamp)
                    )
                    .values(used_at=stamp)
                )
                if claimed.rowcount == 0:
                    trans.rollback()
                    return False
                updated = conn.execute(
                    _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
                )
                if updated.rowcount == 0:
                    logger.warning("Reset token id=%s points at a missing user; rolled back", token_id)
                    trans.rollback()
                    return False
        return True

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def create_audit_log(self, log: AuditLog) -> str:
        log_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _audit_logs.insert().values(
                    id=log_id,
                    actor_id=log.actor_id,
                    actor_name=log.actor_name,
                    action=AuditAction(log.action).value,
                    target_id=log.target_id,
                    target_name=log.target_name,
                    details=log.details,
                    ip_address=log.ip_address,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return log_id

    def list_audit_logs(self, limit: Optional[int] = 50, offset: int = 0) -> list[AuditLog]:
        """Return audit entries newest first. limit=None returns everything."""
        query = _audit_logs.select().order_by(_audit_logs.c.created_at.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit_log(r) for r in rows]

    def count_audit_logs(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_audit_logs)).scalar() or 0

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=row.role,
        created_at=row.created_at,
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_parse(row.expires_at),
        used_at=_parse(row.used_at),
        created_at=_parse(row.created_at),
    )


def _row_to_audit_log(row) -> AuditLog:
    return AuditLog(
        id=row.id,
        actor_id=row.actor_id,
        actor_name=row.actor_name,
        action=AuditAction(row.action),
        target_id=row.target_id,
        target_name=row.target_name,
        details=row.details,
        ip_address=row.ip_address,
        created_at=row.created_at,
    )

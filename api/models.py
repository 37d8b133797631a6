"""
API request and response models for AdminConsole REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON field names follow the camelCase used by the browser client
(newPassword, createdAt, ...). Request models accept both the camelCase alias
and the Python field name.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from auth.models import AuditLog, PublicUser

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# bcrypt ignores everything past 72 bytes; reject instead of truncating.
_BCRYPT_MAX_BYTES = 72


def _check_bcrypt_length(value: str) -> str:
    if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes")
    return value


NewPassword = Annotated[str, Field(min_length=6), AfterValidator(_check_bcrypt_length)]
Username = Annotated[str, Field(min_length=3, max_length=64)]
DisplayName = Annotated[str, Field(min_length=1, max_length=255)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Passwords are not whitespace-stripped; only presence is validated here so
    that a malformed password is reported as bad credentials, not a 400.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class UserResponse(_CamelModel):
    """Outward-facing user. Built from PublicUser, so it has no password field."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    username: str
    email: str
    name: str
    role: RoleEnum
    created_at: str

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            name=user.name,
            role=user.role,
            created_at=user.created_at,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    user: UserResponse


class MeResponse(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    user_id: str
    username: str
    role: RoleEnum


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/v1/auth/request-password-reset."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class PasswordResetRequestResponse(BaseModel):
    """Always {"success": true}. token is populated only when DEBUG=true."""

    success: bool = True
    token: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password.

    The new password may be sent as "newPassword", "new_password", or
    "password" (the form field name used by the browser client).
    """

    token: str = Field(min_length=1, max_length=128)
    new_password: NewPassword = Field(validation_alias=AliasChoices("newPassword", "new_password", "password"))


class SuccessResponse(BaseModel):
    success: bool = True


class VerifyResetTokenResponse(BaseModel):
    valid: bool


# ---------------------------------------------------------------------------
# User management
# ---------------------------------------------------------------------------


class UserCreate(_CamelModel):
    """Request body for POST /api/v1/users (admin only)."""

    username: Username
    email: EmailStr
    password: NewPassword
    name: DisplayName
    role: RoleEnum = RoleEnum.user


class UserUpdate(_CamelModel):
    """Request body for PATCH /api/v1/users/{id} (admin only). All fields optional."""

    username: Optional[Username] = None
    email: Optional[EmailStr] = None
    password: Optional[NewPassword] = None
    name: Optional[DisplayName] = None
    role: Optional[RoleEnum] = None


class ProfileUpdate(_CamelModel):
    """Request body for PATCH /api/v1/profile.

    currentPassword and newPassword travel together. UserService.update_profile
    rejects one without the other and names the missing field in the error.
    """

    name: Optional[DisplayName] = None
    email: Optional[EmailStr] = None
    current_password: Optional[str] = Field(default=None, max_length=255)
    new_password: Optional[NewPassword] = None


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditLogResponse(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    actor_id: Optional[str]
    actor_name: str
    action: str
    target_id: Optional[str]
    target_name: Optional[str]
    details: Optional[str]
    ip_address: Optional[str]
    created_at: str

    @classmethod
    def from_log(cls, log: AuditLog) -> "AuditLogResponse":
        return cls(
            id=log.id or "",
            actor_id=log.actor_id,
            actor_name=log.actor_name,
            action=log.action.value,
            target_id=log.target_id,
            target_name=log.target_name,
            details=log.details,
            ip_address=log.ip_address,
            created_at=log.created_at or "",
        )


class AuditLogPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    logs: list[AuditLogResponse]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class DashboardStats(_CamelModel):
    """Response for GET /api/v1/dashboard/stats."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    total_users: int
    admin_users: int
    regular_users: int
    recent_users: int


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    fields: Optional[dict[str, list[str]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

"""
api/routes/v1/auth.py -- Login and password reset endpoints.

Routes:
  POST /api/v1/auth/login                   -- password login; returns {token, user}
  POST /api/v1/auth/logout                  -- audit entry only (requires auth)
  GET  /api/v1/auth/me                      -- identity from the token (requires auth)
  POST /api/v1/auth/request-password-reset  -- always {"success": true}
  POST /api/v1/auth/reset-password          -- consume a reset token
  GET  /api/v1/auth/verify-reset-token      -- {"valid": bool}

Security:
  POST /login and POST /request-password-reset are rate-limited per IP.
  @limiter.limit must sit below @router.post so the router registers the
  limited wrapper. The limit strings are read from settings per request.
  AuthService.login() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that can carry a credential.
  Logout cannot revoke a stateless token. The client discards it; the token
  itself stays valid until it expires.

Handlers that hash passwords are plain `def` so FastAPI runs them in its
threadpool and bcrypt does not block the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    PasswordResetRequest,
    PasswordResetRequestResponse,
    ResetPasswordRequest,
    SuccessResponse,
    UserResponse,
    VerifyResetTokenResponse,
)
from auth.audit import AuditTrail
from auth.dependencies import get_current_user
from auth.models import AuditAction, Identity
from auth.reset import PasswordResetManager
from auth.service import AuthService
from core.config import get_settings


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _reset_limit() -> str:
    return get_settings().reset_rate_limit


# Auth policy:
# - POST /api/v1/auth/login:                  public
# - POST /api/v1/auth/logout:                 requires auth (get_current_user)
# - GET  /api/v1/auth/me:                     requires auth (get_current_user)
# - POST /api/v1/auth/request-password-reset: public, enumeration-safe
# - POST /api/v1/auth/reset-password:         public, the reset token is the credential
# - GET  /api/v1/auth/verify-reset-token:     public
router = APIRouter()


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_login_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a bearer token.

    Wrong username and wrong password produce the same 401 body; the
    InvalidCredentials raised by AuthService is rendered by the app-level
    handler, which also sets Cache-Control: no-store on it.
    """
    auth_service: AuthService = request.app.state.auth_service
    result = auth_service.login(body.username, body.password, ip_address=_client_ip(request))
    payload = LoginResponse(token=result.token, user=UserResponse.from_public(result.user))
    return _no_store(payload.model_dump(mode="json", by_alias=True))


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(request: Request, identity: Identity = Depends(get_current_user)) -> SuccessResponse:
    """Record the logout. The client is responsible for discarding the token."""
    audit: AuditTrail = request.app.state.audit
    audit.record(
        AuditAction.LOGOUT,
        actor_name=identity.username,
        actor_id=identity.user_id,
        target_id=identity.user_id,
        target_name=identity.username,
        ip_address=_client_ip(request),
    )
    return SuccessResponse()


@router.get("/auth/me", response_model=MeResponse)
async def me(identity: Identity = Depends(get_current_user)) -> MeResponse:
    """Return the identity carried by the caller's token."""
    return MeResponse(user_id=identity.user_id, username=identity.username, role=identity.role)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/request-password-reset", response_model=PasswordResetRequestResponse)
@limiter.limit(_reset_limit)
def request_password_reset(request: Request, body: PasswordResetRequest) -> JSONResponse:
    """Start a password reset. The response is identical whether or not the email exists.

    A production deployment delivers the token out of band (email). In DEBUG
    mode the token is returned in the body so the flow can be exercised
    without a mail server.
    """
    manager: PasswordResetManager = request.app.state.reset_manager
    token = manager.request_reset(body.email, ip_address=_client_ip(request))
    payload = PasswordResetRequestResponse(success=True)
    if token is not None and request.app.state.settings.debug:
        payload = PasswordResetRequestResponse(success=True, token=token)
    return _no_store(payload.model_dump(exclude_none=True))


@router.post("/auth/reset-password", response_model=SuccessResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    """Set a new password with a reset token. Used, expired, and unknown tokens all give 400."""
    manager: PasswordResetManager = request.app.state.reset_manager
    manager.complete_reset(body.token, body.new_password, ip_address=_client_ip(request))
    return _no_store(SuccessResponse().model_dump())


@router.get("/auth/verify-reset-token", response_model=VerifyResetTokenResponse)
def verify_reset_token(request: Request, token: str = Query(default="")) -> VerifyResetTokenResponse:
    """Report whether a reset token can still be used. Never errors on bad input."""
    manager: PasswordResetManager = request.app.state.reset_manager
    return VerifyResetTokenResponse(valid=manager.verify_token(token))

"""
auth/dependencies.py -- FastAPI Depends() guards for authentication and roles.

Two stackable guards:
  get_current_user() -- requires "Authorization: Bearer <token>" and a token
                        that TokenCodec.verify() accepts. Otherwise 401.
  require_admin()    -- depends on get_current_user(), so authentication is
                        always settled first; then requires role "admin".
                        Otherwise 403.

The identity comes straight from the verified token claims; no database read
happens per request. On success it is also stored on request.state.identity
for middleware and handlers that do not take it as a parameter.

Both guards raise core.errors exceptions; api/main.py maps them to the JSON
error envelope (401 responses also get WWW-Authenticate: Bearer).
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import Identity
from auth.tokens import TokenCodec
from core.errors import Forbidden, Unauthorized

_BEARER_PREFIX = "bearer "


def _extract_bearer(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = header[len(_BEARER_PREFIX) :].strip()
    return token or None


def try_get_current_user(request: Request) -> Identity | None:
    """Return the verified Identity for the request, or None. Never raises."""
    token = _extract_bearer(request)
    if token is None:
        return None
    codec: TokenCodec = request.app.state.token_codec
    return codec.verify(token)


def get_current_user(request: Request) -> Identity:
    """Require authentication. Raises Unauthorized (401) if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_user)): ...
    """
    if _extract_bearer(request) is None:
        raise Unauthorized("Unauthorized: no token provided.")
    identity = try_get_current_user(request)
    if identity is None:
        raise Unauthorized("Unauthorized: invalid token.")
    request.state.identity = identity
    return identity


def require_admin(identity: Identity = Depends(get_current_user)) -> Identity:
    """Require admin role. 401 if unauthenticated (from get_current_user), 403 if not admin."""
    if not identity.is_admin:
        raise Forbidden("Forbidden: admin access required.")
    return identity

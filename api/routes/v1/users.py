"""
api/routes/v1/users.py -- User account administration (admin only).

Routes:
  GET    /api/v1/users        -- list users, newest first
  POST   /api/v1/users        -- create user
  PATCH  /api/v1/users/{id}   -- partial update (password is re-hashed)
  DELETE /api/v1/users/{id}   -- delete user; their reset tokens cascade

Passwords never leave this module: every response is built from PublicUser.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import UserCreate, UserResponse, UserUpdate
from auth.dependencies import require_admin
from auth.models import Identity
from auth.users import UserService

# Auth policy:
# - every route here requires admin (require_admin, which runs get_current_user first)
router = APIRouter()


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, identity: Identity = Depends(require_admin)) -> list[UserResponse]:
    users: UserService = request.app.state.user_service
    return [UserResponse.from_public(u) for u in users.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate, identity: Identity = Depends(require_admin)) -> UserResponse:
    """Create a new account. Duplicate username or email -> 400 conflict."""
    users: UserService = request.app.state.user_service
    created = users.create_user(
        identity,
        username=body.username,
        email=body.email,
        password=body.password,
        name=body.name,
        role=body.role.value,
        ip_address=_client_ip(request),
    )
    return UserResponse.from_public(created)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdate,
    identity: Identity = Depends(require_admin),
) -> UserResponse:
    """Update any subset of username, email, password, name, role."""
    users: UserService = request.app.state.user_service
    updated = users.update_user(
        identity,
        user_id,
        username=body.username,
        email=body.email,
        password=body.password,
        name=body.name,
        role=body.role.value if body.role is not None else None,
        ip_address=_client_ip(request),
    )
    return UserResponse.from_public(updated)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: str, identity: Identity = Depends(require_admin)) -> Response:
    """Delete an account. Admins cannot delete themselves."""
    users: UserService = request.app.state.user_service
    users.delete_user(identity, user_id, ip_address=_client_ip(request))
    return Response(status_code=204)

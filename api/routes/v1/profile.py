"""
api/routes/v1/profile.py -- Self-service profile for any authenticated user.

Routes:
  GET   /api/v1/profile  -- the caller's own account
  PATCH /api/v1/profile  -- change name/email, and password with currentPassword

The user ID always comes from the verified token, never from the request, so
a user can only ever read or change their own record.
"""

from fastapi import APIRouter, Depends, Request

from api.models import ProfileUpdate, UserResponse
from auth.dependencies import get_current_user
from auth.models import Identity
from auth.users import UserService

# Auth policy:
# - GET/PATCH /api/v1/profile: requires auth (get_current_user)
router = APIRouter()


@router.get("/profile", response_model=UserResponse)
def get_profile(request: Request, identity: Identity = Depends(get_current_user)) -> UserResponse:
    users: UserService = request.app.state.user_service
    return UserResponse.from_public(users.get_profile(identity))


@router.patch("/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    identity: Identity = Depends(get_current_user),
) -> UserResponse:
    users: UserService = request.app.state.user_service
    updated = users.update_profile(
        identity,
        name=body.name,
        email=body.email,
        current_password=body.current_password,
        new_password=body.new_password,
        ip_address=request.client.host if request.client else None,
    )
    return UserResponse.from_public(updated)

"""
Noterverse Backend — Current User Route
=========================================

What:  GET /api/me returns the signed-in user's profile.
Why:   The frontend calls it right after Google sign-in; a 200 proves the
       token was accepted and the user row exists (created on first call).
"""

from fastapi import APIRouter, Depends

from app.dependencies import require_auth
from app.schemas.note import ErrorResponse, UserResponse
from app.services.auth_gate import AuthContext

router = APIRouter(prefix="/api", tags=["Users"])


@router.get(
    "/me",
    response_model=UserResponse,
    responses={401: {"description": "Missing or invalid token", "model": ErrorResponse}},
    summary="Current user profile",
)
async def read_me(auth: AuthContext = Depends(require_auth)) -> UserResponse:
    return UserResponse(id=auth.user.id, email=auth.user.email, name=auth.user.name)

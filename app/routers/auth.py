from fastapi import APIRouter, Depends
from app.core.dependencies import get_authenticated_user, get_permission_cache, AuthenticatedUser
from app.core.permissions import PermissionCache
from app.models.auth import FirebaseLoginRequest
from app.models.user import ProfileUpdate
from app.models.common import ApiResponse, ok
from app.services import auth_service

router = APIRouter()


@router.post("/firebase", response_model=ApiResponse)
async def firebase_login(data: FirebaseLoginRequest):
    """
    Exchange a Firebase ID token for an API token.

    First-time users are created with the `User` role.
    """
    result = await auth_service.firebase_login(data.firebase_token)
    return ok(result, "Login successful")


@router.post("/verify-token", response_model=ApiResponse)
async def verify_token(data: FirebaseLoginRequest):
    """Verify a Firebase ID token without logging in"""
    identity = await auth_service.verify_firebase_token(data.firebase_token)
    return ok(identity, "Token is valid")


@router.get("/me", response_model=ApiResponse)
async def me(user: AuthenticatedUser = Depends(get_authenticated_user)):
    return ok(await auth_service.get_me(user.user_id))


@router.put("/profile", response_model=ApiResponse)
async def update_profile(
    data: ProfileUpdate,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    profile = await auth_service.update_profile(user.user_id, data)
    return ok(profile, "Profile updated successfully")


@router.post("/logout", response_model=ApiResponse)
async def logout(
    user: AuthenticatedUser = Depends(get_authenticated_user),
    cache: PermissionCache = Depends(get_permission_cache)
):
    await auth_service.logout(user.user_id)
    cache.invalidate(user.user_id)
    return ok(message="Logged out successfully")

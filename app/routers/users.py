from fastapi import APIRouter, Depends, Query
from typing import Optional
from app.core.dependencies import get_permission_cache, require_permission, AuthenticatedUser
from app.core.permissions import Capability, PermissionCache
from app.models.user import UserCreate, UserUpdate, UserStatus, RoleAssignment, PermissionAssignment
from app.models.common import ApiResponse, ok
from app.services import users_service

router = APIRouter()

_manage_roles = require_permission(Capability.USER_MANAGE_ROLES)


@router.get("", response_model=ApiResponse)
async def list_users(
    user: AuthenticatedUser = Depends(require_permission(Capability.USER_VIEW)),
    search: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    status: Optional[UserStatus] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100)
):
    users = await users_service.list_users(search, role, status, page, per_page)
    return ok(users)


@router.post("", response_model=ApiResponse, status_code=201)
async def create_user(
    data: UserCreate,
    user: AuthenticatedUser = Depends(require_permission(Capability.USER_CREATE))
):
    created = await users_service.create_user(data)
    return ok(created, "User created successfully")


@router.get("/{user_id}", response_model=ApiResponse)
async def get_user(
    user_id: int,
    user: AuthenticatedUser = Depends(require_permission(Capability.USER_VIEW))
):
    return ok(await users_service.get_user(user_id))


@router.put("/{user_id}", response_model=ApiResponse)
async def update_user(
    user_id: int,
    data: UserUpdate,
    user: AuthenticatedUser = Depends(require_permission(Capability.USER_UPDATE))
):
    updated = await users_service.update_user(user_id, data)
    return ok(updated, "User updated successfully")


@router.delete("/{user_id}", response_model=ApiResponse)
async def delete_user(
    user_id: int,
    user: AuthenticatedUser = Depends(require_permission(Capability.USER_DELETE))
):
    """Deactivate a user. Accounts are never removed."""
    await users_service.deactivate_user(user_id, user.user_id)
    return ok(message="User deactivated successfully")


@router.post("/{user_id}/assign-role", response_model=ApiResponse)
async def assign_role(
    user_id: int,
    data: RoleAssignment,
    user: AuthenticatedUser = Depends(_manage_roles),
    cache: PermissionCache = Depends(get_permission_cache)
):
    updated = await users_service.assign_role(user_id, data.role, cache)
    return ok(updated, "Role assigned successfully")


@router.post("/{user_id}/remove-role", response_model=ApiResponse)
async def remove_role(
    user_id: int,
    data: RoleAssignment,
    user: AuthenticatedUser = Depends(_manage_roles),
    cache: PermissionCache = Depends(get_permission_cache)
):
    updated = await users_service.remove_role(user_id, data.role, user.user_id, cache)
    return ok(updated, "Role removed successfully")


@router.get("/{user_id}/permissions", response_model=ApiResponse)
async def get_user_permissions(
    user_id: int,
    user: AuthenticatedUser = Depends(require_permission(Capability.USER_VIEW))
):
    return ok(await users_service.get_user_permissions(user_id))


@router.post("/{user_id}/give-permission", response_model=ApiResponse)
async def give_permission(
    user_id: int,
    data: PermissionAssignment,
    user: AuthenticatedUser = Depends(_manage_roles),
    cache: PermissionCache = Depends(get_permission_cache)
):
    permissions = await users_service.give_permission(user_id, data.permission, cache)
    return ok(permissions, "Permission given successfully")


@router.post("/{user_id}/revoke-permission", response_model=ApiResponse)
async def revoke_permission(
    user_id: int,
    data: PermissionAssignment,
    user: AuthenticatedUser = Depends(_manage_roles),
    cache: PermissionCache = Depends(get_permission_cache)
):
    permissions = await users_service.revoke_permission(user_id, data.permission, cache)
    return ok(permissions, "Permission revoked successfully")

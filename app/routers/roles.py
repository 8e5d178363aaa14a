"""
Role and permission administration (Admin only).

System roles (Admin, EO, Panitia, User) can be listed but not renamed,
re-permissioned or deleted.
"""
from fastapi import APIRouter, Depends
from app.core.dependencies import get_permission_cache, require_roles, AuthenticatedUser
from app.core.permissions import PermissionCache, Role
from app.models.role import RoleCreate, RoleUpdate, PermissionCreate
from app.models.user import PermissionAssignment
from app.models.common import ApiResponse, ok
from app.services import roles_service

router = APIRouter()
permissions_router = APIRouter()

_admin = require_roles(Role.ADMIN)


@router.get("", response_model=ApiResponse)
async def list_roles(user: AuthenticatedUser = Depends(_admin)):
    return ok(await roles_service.list_roles())


@router.post("", response_model=ApiResponse, status_code=201)
async def create_role(data: RoleCreate, user: AuthenticatedUser = Depends(_admin)):
    role = await roles_service.create_role(data)
    return ok(role, "Role created successfully")


@router.put("/{role_id}", response_model=ApiResponse)
async def update_role(
    role_id: int,
    data: RoleUpdate,
    user: AuthenticatedUser = Depends(_admin),
    cache: PermissionCache = Depends(get_permission_cache)
):
    role = await roles_service.update_role(role_id, data, cache)
    return ok(role, "Role updated successfully")


@router.delete("/{role_id}", response_model=ApiResponse)
async def delete_role(
    role_id: int,
    user: AuthenticatedUser = Depends(_admin),
    cache: PermissionCache = Depends(get_permission_cache)
):
    await roles_service.delete_role(role_id, cache)
    return ok(message="Role deleted successfully")


@router.post("/{role_id}/assign-permission", response_model=ApiResponse)
async def assign_permission(
    role_id: int,
    data: PermissionAssignment,
    user: AuthenticatedUser = Depends(_admin),
    cache: PermissionCache = Depends(get_permission_cache)
):
    role = await roles_service.assign_permission(role_id, data.permission, cache)
    return ok(role, "Permission assigned successfully")


@router.post("/{role_id}/remove-permission", response_model=ApiResponse)
async def remove_permission(
    role_id: int,
    data: PermissionAssignment,
    user: AuthenticatedUser = Depends(_admin),
    cache: PermissionCache = Depends(get_permission_cache)
):
    role = await roles_service.remove_permission(role_id, data.permission, cache)
    return ok(role, "Permission removed successfully")


@permissions_router.get("", response_model=ApiResponse)
async def list_permissions(user: AuthenticatedUser = Depends(_admin)):
    return ok(await roles_service.list_permissions())


@permissions_router.post("", response_model=ApiResponse, status_code=201)
async def create_permission(data: PermissionCreate, user: AuthenticatedUser = Depends(_admin)):
    permission = await roles_service.create_permission(data)
    return ok(permission, "Permission created successfully")

import logging
from typing import List
from app.database import get_db_connection
from app.models.role import Role, RoleCreate, RoleUpdate, Permission, PermissionCreate
from app.core.exceptions import NotFoundError, ConflictError, AuthorizationError, ValidationError
from app.core.permissions import PermissionCache, SYSTEM_ROLES

logger = logging.getLogger(__name__)


async def _fetch_role(conn, role_id: int) -> Role:
    row = await conn.fetchrow("SELECT * FROM roles WHERE id = $1", role_id)
    if not row:
        raise NotFoundError("Role not found")
    permissions = await conn.fetch("""
        SELECT p.name FROM role_permissions rp
        JOIN permissions p ON p.id = rp.permission_id
        WHERE rp.role_id = $1
        ORDER BY p.name
    """, role_id)
    return Role(
        **dict(row),
        is_system=row['name'] in SYSTEM_ROLES,
        permissions=[p['name'] for p in permissions],
    )


async def _permission_ids(conn, names: List[str]) -> List[int]:
    if not names:
        return []
    rows = await conn.fetch("SELECT id, name FROM permissions WHERE name = ANY($1::text[])", names)
    found = {r['name'] for r in rows}
    missing = [n for n in names if n not in found]
    if missing:
        raise ValidationError("Validation error", {"permissions": [f"Unknown permission: {n}" for n in missing]})
    return [r['id'] for r in rows]


def _ensure_mutable(role_name: str) -> None:
    if role_name in SYSTEM_ROLES:
        raise AuthorizationError("System roles cannot be modified or deleted")


async def list_roles() -> List[Role]:
    async with get_db_connection(use_transaction=False) as conn:
        rows = await conn.fetch("""
            SELECT r.*,
                   COALESCE(array_agg(p.name ORDER BY p.name) FILTER (WHERE p.name IS NOT NULL), '{}') AS permission_names
            FROM roles r
            LEFT JOIN role_permissions rp ON rp.role_id = r.id
            LEFT JOIN permissions p ON p.id = rp.permission_id
            GROUP BY r.id
            ORDER BY r.id
        """)
    return [
        Role(
            id=r['id'], name=r['name'], created_at=r['created_at'], updated_at=r['updated_at'],
            is_system=r['name'] in SYSTEM_ROLES,
            permissions=list(r['permission_names'] or []),
        )
        for r in rows
    ]


async def create_role(data: RoleCreate) -> Role:
    async with get_db_connection() as conn:
        exists = await conn.fetchval("SELECT id FROM roles WHERE name = $1", data.name)
        if exists:
            raise ValidationError("Validation error", {"name": ["The role name has already been taken."]})

        role_id = await conn.fetchval("INSERT INTO roles (name) VALUES ($1) RETURNING id", data.name)
        for permission_id in await _permission_ids(conn, data.permissions):
            await conn.execute(
                "INSERT INTO role_permissions (role_id, permission_id) VALUES ($1, $2) ON CONFLICT DO NOTHING",
                role_id, permission_id
            )
        role = await _fetch_role(conn, role_id)

    logger.info(f"Role created: {data.name}")
    return role


async def update_role(role_id: int, data: RoleUpdate, cache: PermissionCache) -> Role:
    async with get_db_connection() as conn:
        current = await _fetch_role(conn, role_id)
        _ensure_mutable(current.name)

        if data.name and data.name != current.name:
            taken = await conn.fetchval("SELECT id FROM roles WHERE name = $1 AND id <> $2", data.name, role_id)
            if taken:
                raise ValidationError("Validation error", {"name": ["The role name has already been taken."]})
            await conn.execute("UPDATE roles SET name = $1, updated_at = NOW() WHERE id = $2", data.name, role_id)

        if data.permissions is not None:
            ids = await _permission_ids(conn, data.permissions)
            await conn.execute("DELETE FROM role_permissions WHERE role_id = $1", role_id)
            for permission_id in ids:
                await conn.execute(
                    "INSERT INTO role_permissions (role_id, permission_id) VALUES ($1, $2)",
                    role_id, permission_id
                )

        role = await _fetch_role(conn, role_id)

    cache.invalidate()
    logger.info(f"Role {role_id} updated")
    return role


async def delete_role(role_id: int, cache: PermissionCache) -> None:
    async with get_db_connection() as conn:
        current = await _fetch_role(conn, role_id)
        _ensure_mutable(current.name)

        holders = await conn.fetchval("SELECT COUNT(*) FROM user_roles WHERE role_id = $1", role_id)
        if holders:
            raise ConflictError(f"Cannot delete role. {holders} user(s) still have this role.")

        await conn.execute("DELETE FROM roles WHERE id = $1", role_id)

    cache.invalidate()
    logger.info(f"Role {current.name} deleted")


async def assign_permission(role_id: int, permission_name: str, cache: PermissionCache) -> Role:
    async with get_db_connection() as conn:
        await _fetch_role(conn, role_id)
        (permission_id,) = await _permission_ids(conn, [permission_name])
        await conn.execute(
            "INSERT INTO role_permissions (role_id, permission_id) VALUES ($1, $2) ON CONFLICT DO NOTHING",
            role_id, permission_id
        )
        role = await _fetch_role(conn, role_id)

    cache.invalidate()
    logger.info(f"Permission '{permission_name}' assigned to role {role.name}")
    return role


async def remove_permission(role_id: int, permission_name: str, cache: PermissionCache) -> Role:
    async with get_db_connection() as conn:
        await _fetch_role(conn, role_id)
        (permission_id,) = await _permission_ids(conn, [permission_name])
        await conn.execute(
            "DELETE FROM role_permissions WHERE role_id = $1 AND permission_id = $2",
            role_id, permission_id
        )
        role = await _fetch_role(conn, role_id)

    cache.invalidate()
    logger.info(f"Permission '{permission_name}' removed from role {role.name}")
    return role


async def list_permissions() -> List[Permission]:
    async with get_db_connection(use_transaction=False) as conn:
        rows = await conn.fetch("SELECT id, name, created_at FROM permissions ORDER BY name")
    return [Permission(**dict(r)) for r in rows]


async def create_permission(data: PermissionCreate) -> Permission:
    async with get_db_connection() as conn:
        exists = await conn.fetchval("SELECT id FROM permissions WHERE name = $1", data.name)
        if exists:
            raise ValidationError("Validation error", {"name": ["The permission name has already been taken."]})
        row = await conn.fetchrow(
            "INSERT INTO permissions (name) VALUES ($1) RETURNING id, name, created_at", data.name
        )

    logger.info(f"Permission created: {data.name}")
    return Permission(**dict(row))

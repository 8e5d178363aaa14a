import logging
from typing import Optional, List
from app.database import get_db_connection
from app.core.exceptions import NotFoundError, ConflictError, ValidationError
from app.core.permissions import PermissionCache, Role
from app.models.user import UserCreate, UserUpdate, UserWithRoles, UserStatus
from app.models.common import Page

logger = logging.getLogger(__name__)


async def fetch_user_with_roles(conn, user_id: int) -> Optional[UserWithRoles]:
    """Load a user row together with role names and effective permission names"""
    row = await conn.fetchrow("""
        SELECT id, name, email, phone, firebase_uid, photo, status, created_at, updated_at
        FROM users WHERE id = $1
    """, user_id)
    if not row:
        return None

    roles = await conn.fetch("""
        SELECT r.name FROM user_roles ur
        JOIN roles r ON r.id = ur.role_id
        WHERE ur.user_id = $1
        ORDER BY r.name
    """, user_id)

    permissions = await conn.fetch("""
        SELECT p.name FROM user_roles ur
        JOIN role_permissions rp ON rp.role_id = ur.role_id
        JOIN permissions p ON p.id = rp.permission_id
        WHERE ur.user_id = $1
        UNION
        SELECT p.name FROM user_permissions up
        JOIN permissions p ON p.id = up.permission_id
        WHERE up.user_id = $1
        ORDER BY 1
    """, user_id)

    return UserWithRoles(
        **dict(row),
        roles=[r['name'] for r in roles],
        permissions=[p['name'] for p in permissions],
    )


async def _get_role_id(conn, role_name: str) -> int:
    role_id = await conn.fetchval("SELECT id FROM roles WHERE name = $1", role_name)
    if role_id is None:
        raise NotFoundError(f"Role '{role_name}' not found")
    return role_id


async def _get_permission_id(conn, permission_name: str) -> int:
    permission_id = await conn.fetchval("SELECT id FROM permissions WHERE name = $1", permission_name)
    if permission_id is None:
        raise NotFoundError(f"Permission '{permission_name}' not found")
    return permission_id


async def _ensure_user(conn, user_id: int):
    exists = await conn.fetchval("SELECT id FROM users WHERE id = $1", user_id)
    if exists is None:
        raise NotFoundError("User not found")


async def attach_role(conn, user_id: int, role_name: str) -> None:
    role_id = await _get_role_id(conn, role_name)
    await conn.execute("""
        INSERT INTO user_roles (user_id, role_id) VALUES ($1, $2)
        ON CONFLICT DO NOTHING
    """, user_id, role_id)


async def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[UserStatus] = None,
    page: int = 1,
    per_page: int = 20
) -> Page:
    """Paginated users with their roles"""
    async with get_db_connection(use_transaction=False) as conn:
        where = ["1=1"]
        params = []
        idx = 1

        if search:
            where.append(f"(u.name ILIKE ${idx} OR u.email ILIKE ${idx})")
            params.append(f"%{search}%")
            idx += 1

        if role:
            where.append(f"""EXISTS (
                SELECT 1 FROM user_roles ur JOIN roles r ON r.id = ur.role_id
                WHERE ur.user_id = u.id AND r.name = ${idx}
            )""")
            params.append(role)
            idx += 1

        if status:
            where.append(f"u.status = ${idx}")
            params.append(status.value)
            idx += 1

        where_sql = " AND ".join(where)
        total = await conn.fetchval(f"SELECT COUNT(*) FROM users u WHERE {where_sql}", *params)

        rows = await conn.fetch(f"""
            SELECT u.id, u.name, u.email, u.phone, u.photo, u.status, u.created_at,
                   COALESCE(
                       (SELECT array_agg(r.name ORDER BY r.name) FROM user_roles ur
                        JOIN roles r ON r.id = ur.role_id WHERE ur.user_id = u.id),
                       '{{}}'
                   ) AS roles
            FROM users u
            WHERE {where_sql}
            ORDER BY u.created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """, *params, per_page, (page - 1) * per_page)

    total = total or 0
    return Page(
        items=[{**dict(r), 'roles': list(r['roles'] or [])} for r in rows],
        total=total,
        page=page,
        per_page=per_page,
        last_page=max(1, -(-total // per_page)),
    )


async def get_user(user_id: int) -> UserWithRoles:
    async with get_db_connection(use_transaction=False) as conn:
        user = await fetch_user_with_roles(conn, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def create_user(data: UserCreate) -> UserWithRoles:
    """Create a user managed by an administrator (signs in later through Firebase)"""
    async with get_db_connection() as conn:
        exists = await conn.fetchval("SELECT id FROM users WHERE email = $1", data.email)
        if exists:
            raise ValidationError("Validation error", {"email": ["The email has already been taken."]})

        user_id = await conn.fetchval("""
            INSERT INTO users (name, email, phone, status)
            VALUES ($1, $2, $3, $4)
            RETURNING id
        """, data.name, data.email, data.phone, data.status.value)

        for role_name in data.roles or [Role.USER.value]:
            await attach_role(conn, user_id, role_name)

        user = await fetch_user_with_roles(conn, user_id)

    logger.info(f"User created: {user_id} ({data.email})")
    return user


async def update_user(user_id: int, data: UserUpdate) -> UserWithRoles:
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    async with get_db_connection() as conn:
        await _ensure_user(conn, user_id)

        if 'email' in updates:
            taken = await conn.fetchval(
                "SELECT id FROM users WHERE email = $1 AND id <> $2", updates['email'], user_id
            )
            if taken:
                raise ValidationError("Validation error", {"email": ["The email has already been taken."]})

        if updates:
            if 'status' in updates:
                updates['status'] = UserStatus(updates['status']).value
            sets = []
            params = []
            for i, (field, value) in enumerate(updates.items(), start=1):
                sets.append(f"{field} = ${i}")
                params.append(value)
            params.append(user_id)
            await conn.execute(f"""
                UPDATE users SET {', '.join(sets)}, updated_at = NOW()
                WHERE id = ${len(params)}
            """, *params)

            # Deactivation revokes the current session
            if updates.get('status') == UserStatus.INACTIVE.value:
                await conn.execute(
                    "UPDATE users SET api_token = NULL, token_expires_at = NULL WHERE id = $1", user_id
                )

        user = await fetch_user_with_roles(conn, user_id)
    return user


async def deactivate_user(user_id: int, actor_id: int) -> None:
    """Users are never hard-deleted; they are deactivated and their token revoked"""
    if user_id == actor_id:
        raise ConflictError("You cannot delete your own account")

    async with get_db_connection() as conn:
        result = await conn.execute("""
            UPDATE users
            SET status = 'inactive', api_token = NULL, token_expires_at = NULL, updated_at = NOW()
            WHERE id = $1
        """, user_id)
        if result == "UPDATE 0":
            raise NotFoundError("User not found")

    logger.info(f"User {user_id} deactivated by {actor_id}")


async def assign_role(user_id: int, role_name: str, cache: PermissionCache) -> UserWithRoles:
    async with get_db_connection() as conn:
        await _ensure_user(conn, user_id)
        await attach_role(conn, user_id, role_name)
        user = await fetch_user_with_roles(conn, user_id)

    cache.invalidate(user_id)
    logger.info(f"Role '{role_name}' assigned to user {user_id}")
    return user


async def remove_role(user_id: int, role_name: str, actor_id: int, cache: PermissionCache) -> UserWithRoles:
    if user_id == actor_id and role_name == Role.ADMIN.value:
        raise ConflictError("You cannot remove your own Admin role")

    async with get_db_connection() as conn:
        await _ensure_user(conn, user_id)
        role_id = await _get_role_id(conn, role_name)
        await conn.execute(
            "DELETE FROM user_roles WHERE user_id = $1 AND role_id = $2", user_id, role_id
        )
        user = await fetch_user_with_roles(conn, user_id)

    cache.invalidate(user_id)
    logger.info(f"Role '{role_name}' removed from user {user_id}")
    return user


async def get_user_permissions(user_id: int) -> dict:
    """Direct permissions, role-derived permissions and their union"""
    async with get_db_connection(use_transaction=False) as conn:
        await _ensure_user(conn, user_id)

        direct = await conn.fetch("""
            SELECT p.name FROM user_permissions up
            JOIN permissions p ON p.id = up.permission_id
            WHERE up.user_id = $1 ORDER BY p.name
        """, user_id)

        via_roles = await conn.fetch("""
            SELECT DISTINCT p.name FROM user_roles ur
            JOIN role_permissions rp ON rp.role_id = ur.role_id
            JOIN permissions p ON p.id = rp.permission_id
            WHERE ur.user_id = $1 ORDER BY p.name
        """, user_id)

        roles = await conn.fetch("""
            SELECT r.name FROM user_roles ur JOIN roles r ON r.id = ur.role_id
            WHERE ur.user_id = $1 ORDER BY r.name
        """, user_id)

    direct_names = [r['name'] for r in direct]
    role_names = [r['name'] for r in via_roles]
    return {
        "user_id": user_id,
        "roles": [r['name'] for r in roles],
        "direct_permissions": direct_names,
        "permissions_via_roles": role_names,
        "all_permissions": sorted(set(direct_names) | set(role_names)),
    }


async def give_permission(user_id: int, permission_name: str, cache: PermissionCache) -> dict:
    async with get_db_connection() as conn:
        await _ensure_user(conn, user_id)
        permission_id = await _get_permission_id(conn, permission_name)
        await conn.execute("""
            INSERT INTO user_permissions (user_id, permission_id) VALUES ($1, $2)
            ON CONFLICT DO NOTHING
        """, user_id, permission_id)

    cache.invalidate(user_id)
    logger.info(f"Permission '{permission_name}' given to user {user_id}")
    return await get_user_permissions(user_id)


async def revoke_permission(user_id: int, permission_name: str, cache: PermissionCache) -> dict:
    async with get_db_connection() as conn:
        await _ensure_user(conn, user_id)
        permission_id = await _get_permission_id(conn, permission_name)
        await conn.execute(
            "DELETE FROM user_permissions WHERE user_id = $1 AND permission_id = $2",
            user_id, permission_id
        )

    cache.invalidate(user_id)
    logger.info(f"Permission '{permission_name}' revoked from user {user_id}")
    return await get_user_permissions(user_id)

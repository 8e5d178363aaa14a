import logging
from app.database import get_db_connection
from app.core.exceptions import AuthorizationError, NotFoundError
from app.core.permissions import Role
from app.core.security import create_access_token
from app.models.auth import AuthResult, FirebaseIdentity
from app.models.user import ProfileUpdate, UserWithRoles
from app.services import firebase_service
from app.services.users_service import attach_role, fetch_user_with_roles

logger = logging.getLogger(__name__)


async def find_or_create_user(conn, identity: FirebaseIdentity) -> int:
    """
    Match a Firebase identity to a local user by uid, then by email.
    Unknown identities become new active users with the User role.
    """
    row = await conn.fetchrow("""
        SELECT id, firebase_uid FROM users
        WHERE firebase_uid = $1 OR ($2::text IS NOT NULL AND email = $2)
        ORDER BY (firebase_uid = $1) DESC NULLS LAST
        LIMIT 1
    """, identity.uid, identity.email)

    if row:
        if not row['firebase_uid']:
            await conn.execute(
                "UPDATE users SET firebase_uid = $1, updated_at = NOW() WHERE id = $2",
                identity.uid, row['id']
            )
            logger.info(f"Linked Firebase uid to existing user {row['id']}")
        return row['id']

    if not identity.email:
        raise AuthorizationError("Firebase account has no email address")

    user_id = await conn.fetchval("""
        INSERT INTO users (name, email, phone, photo, firebase_uid, status)
        VALUES ($1, $2, $3, $4, $5, 'active')
        RETURNING id
    """, identity.name or "User", identity.email, identity.phone_number, identity.picture, identity.uid)

    await attach_role(conn, user_id, Role.USER.value)
    logger.info(f"New user {user_id} created from Firebase login ({identity.email})")
    return user_id


async def firebase_login(firebase_token: str) -> AuthResult:
    """
    Exchange a Firebase ID token for an API token.

    The issued JWT is stored on the user row; only that token is accepted
    afterwards, so logging in again or logging out revokes earlier tokens.
    """
    identity = await firebase_service.verify_id_token(firebase_token)

    async with get_db_connection() as conn:
        user_id = await find_or_create_user(conn, identity)

        status = await conn.fetchval("SELECT status FROM users WHERE id = $1", user_id)
        if status != 'active':
            logger.warning(f"Inactive user {user_id} tried to log in")
            raise AuthorizationError("Your account is not active")

        user = await fetch_user_with_roles(conn, user_id)
        token, expires_at = create_access_token(user_id, user.email)

        await conn.execute("""
            UPDATE users SET api_token = $1, token_expires_at = $2, updated_at = NOW()
            WHERE id = $3
        """, token, expires_at, user_id)

    logger.info(f"User {user_id} logged in")
    return AuthResult(user=user, token=token, expires_at=expires_at)


async def verify_firebase_token(firebase_token: str) -> dict:
    """Check a Firebase token without logging in; reports whether a local user exists"""
    identity = await firebase_service.verify_id_token(firebase_token)

    async with get_db_connection(use_transaction=False) as conn:
        user_id = await conn.fetchval(
            "SELECT id FROM users WHERE firebase_uid = $1", identity.uid
        )

    return {
        "valid": True,
        "identity": identity.model_dump(),
        "registered": user_id is not None,
        "user_id": user_id,
    }


async def get_me(user_id: int) -> UserWithRoles:
    async with get_db_connection(use_transaction=False) as conn:
        user = await fetch_user_with_roles(conn, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def update_profile(user_id: int, data: ProfileUpdate) -> UserWithRoles:
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    async with get_db_connection() as conn:
        if updates:
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
        user = await fetch_user_with_roles(conn, user_id)

    if not user:
        raise NotFoundError("User not found")
    return user


async def logout(user_id: int) -> None:
    async with get_db_connection() as conn:
        await conn.execute("""
            UPDATE users SET api_token = NULL, token_expires_at = NULL, updated_at = NOW()
            WHERE id = $1
        """, user_id)
    logger.info(f"User {user_id} logged out")

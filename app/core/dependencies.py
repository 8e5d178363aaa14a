from fastapi import Depends, Request
from app.core.middleware import SessionContext, get_session_context
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.permissions import Capability, PermissionCache, Role, SubjectClaims
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def get_current_session(request: Request) -> SessionContext:
    """
    Dependency to get current session context.
    Returns SessionContext (may be invalid if not authenticated).
    """
    return get_session_context(request)


def get_permission_cache(request: Request) -> PermissionCache:
    """Dependency returning the application-wide permission cache"""
    return request.app.state.permission_cache


class AuthenticatedUser:
    """
    The authenticated caller together with their claims.
    Use this for endpoints that require authentication.
    """
    def __init__(self, session: SessionContext, claims: SubjectClaims):
        self.session = session
        self.claims = claims

    @property
    def user_id(self) -> int:
        return self.session.user_id

    @property
    def email(self) -> str:
        return self.session.email

    @property
    def name(self) -> str:
        return self.session.name

    @property
    def is_admin(self) -> bool:
        return self.claims.is_admin

    def has(self, capability: Capability) -> bool:
        return self.claims.has(capability)

    def has_any_role(self, *roles: Role) -> bool:
        return self.claims.has_any_role(*roles)


async def get_authenticated_user(
    request: Request,
    cache: PermissionCache = Depends(get_permission_cache)
) -> AuthenticatedUser:
    """Dependency to get the authenticated user, 401 when there is no valid session"""
    session = get_session_context(request)
    if not session.is_valid:
        raise AuthenticationError(session.reason or "Authentication required")

    claims = await cache.get(session.user_id)
    request.state.claims = claims
    return AuthenticatedUser(session, claims)


async def get_optional_user(
    request: Request,
    cache: PermissionCache = Depends(get_permission_cache)
) -> Optional[AuthenticatedUser]:
    """Like get_authenticated_user, but anonymous callers get None"""
    session = get_session_context(request)
    if not session.is_valid:
        return None
    claims = await cache.get(session.user_id)
    return AuthenticatedUser(session, claims)


def require_permission(*capabilities: Capability):
    """
    Dependency factory: caller must hold at least one of the capabilities.

    Usage:
        user: AuthenticatedUser = Depends(require_permission(Capability.TIKET_SCAN))
    """
    async def checker(user: AuthenticatedUser = Depends(get_authenticated_user)) -> AuthenticatedUser:
        if not user.claims.has_any(*capabilities):
            names = ", ".join(c.value for c in capabilities)
            logger.warning(f"User {user.user_id} lacks permission: {names}")
            raise AuthorizationError(
                "You do not have permission to access this resource",
                {"required_permission": [c.value for c in capabilities]}
            )
        return user
    return checker


def require_roles(*roles: Role):
    """Dependency factory: caller must hold at least one of the roles"""
    async def checker(user: AuthenticatedUser = Depends(get_authenticated_user)) -> AuthenticatedUser:
        if not user.claims.has_any_role(*roles):
            logger.warning(f"User {user.user_id} lacks role: {[r.value for r in roles]}")
            raise AuthorizationError(
                "You do not have the required role to access this resource",
                {"required_roles": [r.value for r in roles]}
            )
        return user
    return checker

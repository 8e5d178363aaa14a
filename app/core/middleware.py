import logging
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from fastapi import Request
from app.database import get_db_connection
from app.core.security import get_bearer_token, verify_access_token, get_client_ip

logger = logging.getLogger(__name__)

class SessionContext:
    """Session context object"""
    def __init__(self, session_data: Optional[Dict[str, Any]] = None, reason: Optional[str] = None):
        if session_data:
            self.user_id = session_data['user_id']
            self.email = session_data['email']
            self.name = session_data['name']
            self.expires_at = session_data['expires_at']
            self.is_valid = True
            self.reason = None
        else:
            self.user_id = None
            self.email = None
            self.name = None
            self.expires_at = None
            self.is_valid = False
            # Why authentication failed, when a token was presented at all
            self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'email': self.email,
            'name': self.name,
            'expires_at': self.expires_at,
            'is_valid': self.is_valid
        }


async def load_session(token: str) -> SessionContext:
    """
    Resolve a bearer token into a session.

    The token must decode, belong to an existing user, match the token stored
    for that user (so logout revokes it) and not be past the stored expiry.
    """
    payload = verify_access_token(token)
    if not payload:
        return SessionContext(reason="Invalid or expired token")

    async with get_db_connection(use_transaction=False) as conn:
        user = await conn.fetchrow("""
            SELECT id, name, email, status, api_token, token_expires_at
            FROM users
            WHERE id = $1
        """, payload['user_id'])

    if not user:
        return SessionContext(reason="Unauthenticated")

    if user['api_token'] != token:
        return SessionContext(reason="Token is invalid or has been logged out")

    expires_at = user['token_expires_at']
    if expires_at and expires_at < datetime.now(timezone.utc):
        return SessionContext(reason="Token has expired, please log in again")

    if user['status'] != 'active':
        return SessionContext(reason="Account is inactive")

    return SessionContext({
        'user_id': user['id'],
        'email': user['email'],
        'name': user['name'],
        'expires_at': expires_at,
    })


async def session_validation_middleware(request: Request, call_next):
    """
    Middleware to validate bearer tokens.
    Sets request.state.session_context for use in endpoints; the database is
    only consulted when an Authorization header is present.
    """
    token = get_bearer_token(request)
    if not token:
        request.state.session_context = SessionContext()
        return await call_next(request)

    try:
        request.state.session_context = await load_session(token)
    except Exception as e:
        logger.warning(f"Session validation error for path {request.url.path}: {e}")
        request.state.session_context = SessionContext(reason="Unauthenticated")

    return await call_next(request)


def get_session_context(request: Request) -> SessionContext:
    """Helper function to get session context from request"""
    return getattr(request.state, 'session_context', SessionContext())


async def request_logging_middleware(request: Request, call_next):
    """Simple request logging middleware"""
    start_time = time.time()

    method = request.method
    path = request.url.path

    response = await call_next(request)

    duration = round((time.time() - start_time) * 1000, 2)

    session_context = getattr(request.state, 'session_context', None)
    user_id = getattr(session_context, 'user_id', None) or 'anonymous'

    logger.info(f"{method} {path} | {response.status_code} | {duration}ms | user={user_id} ip={get_client_ip(request)}")

    return response

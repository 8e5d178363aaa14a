import jwt
import logging
from datetime import datetime, timedelta, timezone
from fastapi import Request
from typing import Optional, Tuple
from app.config import settings

logger = logging.getLogger(__name__)


def create_access_token(user_id: int, email: str) -> Tuple[str, datetime]:
    """Create a JWT access token. Returns the token and its expiry."""
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=settings.jwt_ttl_minutes)
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": expires_at,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, expires_at


def verify_access_token(token: str) -> Optional[dict]:
    """Verify a JWT access token and return payload, or None when invalid or expired"""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.debug("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid access token: {e}")
        return None

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None

    return {
        "user_id": user_id,
        "email": payload.get("email"),
        "expires_at": datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    }


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the bearer token from the Authorization header"""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_client_ip(request: Request) -> Optional[str]:
    """Get client IP address from request headers"""
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.client.host if request.client else None

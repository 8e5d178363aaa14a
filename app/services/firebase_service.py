"""
Firebase identity verification.

Wraps the Firebase Admin SDK. The app is initialised lazily on first use,
from FIREBASE_CREDENTIALS (service account JSON path) when set, otherwise
from application default credentials with FIREBASE_PROJECT_ID.
"""
import asyncio
import logging
from typing import Optional

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

from app.config import settings
from app.core.exceptions import AuthenticationError, ExternalServiceError
from app.models.auth import FirebaseIdentity

logger = logging.getLogger(__name__)

_app: Optional[firebase_admin.App] = None


def get_firebase_app() -> firebase_admin.App:
    global _app
    if _app is not None:
        return _app

    try:
        _app = firebase_admin.get_app()
    except ValueError:
        options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None
        if settings.firebase_credentials:
            cred = credentials.Certificate(settings.firebase_credentials)
        else:
            cred = credentials.ApplicationDefault()
        _app = firebase_admin.initialize_app(cred, options)
        logger.info(f"Firebase app initialised (project={settings.firebase_project_id or 'default'})")

    return _app


def _verify(token: str) -> dict:
    return firebase_auth.verify_id_token(token, app=get_firebase_app(), check_revoked=False)


async def verify_id_token(token: str) -> FirebaseIdentity:
    """
    Verify a Firebase ID token and return the identity it carries.

    Raises AuthenticationError when Firebase rejects the token and
    ExternalServiceError when Firebase itself cannot be reached.
    """
    try:
        # The SDK is blocking (certificate fetch over HTTP)
        claims = await asyncio.to_thread(_verify, token)
    except (firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
            firebase_auth.RevokedIdTokenError, firebase_auth.UserDisabledError) as e:
        logger.warning(f"Firebase token rejected: {e}")
        raise AuthenticationError("Invalid Firebase token")
    except ValueError as e:
        logger.warning(f"Malformed Firebase token: {e}")
        raise AuthenticationError("Invalid Firebase token")
    except firebase_auth.CertificateFetchError as e:
        logger.error(f"Could not fetch Firebase certificates: {e}")
        raise ExternalServiceError("Identity provider unavailable")

    return FirebaseIdentity(
        uid=claims["uid"],
        email=claims.get("email"),
        name=claims.get("name"),
        picture=claims.get("picture"),
        phone_number=claims.get("phone_number"),
        email_verified=bool(claims.get("email_verified", False)),
    )

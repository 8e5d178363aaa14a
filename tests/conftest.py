"""
Global pytest configuration and shared fixtures.
"""
import os
import sys

# Add app to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read at import time
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-jwt-signing-only")
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("MIDTRANS_SERVER_KEY", "SB-Mid-server-test")
os.environ.setdefault("MIDTRANS_CLIENT_KEY", "SB-Mid-client-test")

import pytest
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.core.dependencies import get_authenticated_user, AuthenticatedUser
from app.core.permissions import Role, SubjectClaims, PermissionCache
from tests.utils.mocks import MockDBConnection, patch_db
from tests.utils.factories import make_claims, make_user


# ============================================================================
# HTTP client
# ============================================================================

@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app (lifespan is not run, no real pool)"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def fresh_permission_cache():
    app.state.permission_cache = PermissionCache()
    yield app.state.permission_cache
    app.dependency_overrides.clear()


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def mock_conn() -> MockDBConnection:
    return MockDBConnection()


@pytest.fixture
def db(mock_conn):
    """Patch get_db_connection in the middleware and permission layers"""
    with patch_db(mock_conn, 'app.core.middleware', 'app.core.permissions'):
        yield mock_conn


# ============================================================================
# Authentication
# ============================================================================

@pytest.fixture
def login_as():
    """
    Authenticate requests as a user with the given roles.

    Usage:
        login_as(1, Role.EO)
    """
    def _login(user_id: int = 1, *roles: Role, extra: tuple = ()) -> AuthenticatedUser:
        user = make_user(make_claims(user_id, *roles, extra=extra))
        app.dependency_overrides[get_authenticated_user] = lambda: user
        return user

    return _login


@pytest.fixture
def admin_claims() -> SubjectClaims:
    return make_claims(1, Role.ADMIN)


@pytest.fixture
def eo_claims() -> SubjectClaims:
    return make_claims(2, Role.EO)


@pytest.fixture
def user_claims() -> SubjectClaims:
    return make_claims(3, Role.USER)


@pytest.fixture
def panitia_claims() -> SubjectClaims:
    return make_claims(4, Role.PANITIA)

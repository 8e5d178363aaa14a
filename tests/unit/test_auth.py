"""
Tests for authentication: tokens, sessions and Firebase login.
"""
import pytest
from httpx import AsyncClient
from unittest.mock import patch, AsyncMock
from datetime import datetime, timedelta, timezone

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.middleware import load_session
from app.core.permissions import Role
from app.core.security import create_access_token, verify_access_token
from app.models.auth import FirebaseIdentity
from app.models.user import UserWithRoles
from app.services import auth_service
from tests.utils.factories import UserFactory
from tests.utils.mocks import MockDBConnection, patch_db


def identity(**kwargs) -> FirebaseIdentity:
    return FirebaseIdentity(**{
        "uid": "firebase-abc",
        "email": "budi@example.com",
        "name": "Budi",
        "email_verified": True,
        **kwargs,
    })


class TestAccessToken:

    def test_round_trip(self):
        token, expires_at = create_access_token(7, "budi@example.com")

        payload = verify_access_token(token)

        assert payload["user_id"] == 7
        assert payload["email"] == "budi@example.com"
        assert abs((payload["expires_at"] - expires_at).total_seconds()) < 1

    def test_garbage_token(self):
        assert verify_access_token("not-a-jwt") is None

    def test_expired_token(self):
        with patch('app.core.security.settings.jwt_ttl_minutes', -1):
            token, _ = create_access_token(7, "budi@example.com")

        assert verify_access_token(token) is None


def session_db(token: str, **user_fields) -> MockDBConnection:
    conn = MockDBConnection()
    conn.set_fetchrow_return("FROM users", UserFactory.create(
        id=7,
        api_token=user_fields.pop("api_token", token),
        token_expires_at=user_fields.pop("token_expires_at", datetime.now(timezone.utc) + timedelta(hours=1)),
        **user_fields
    ))
    return conn


class TestLoadSession:

    @pytest.mark.asyncio
    async def test_valid_session(self):
        token, _ = create_access_token(7, "budi@example.com")

        with patch_db(session_db(token), 'app.core.middleware'):
            session = await load_session(token)

        assert session.is_valid
        assert session.user_id == 7

    @pytest.mark.asyncio
    async def test_logged_out_token(self):
        token, _ = create_access_token(7, "budi@example.com")

        with patch_db(session_db(token, api_token=None), 'app.core.middleware'):
            session = await load_session(token)

        assert not session.is_valid
        assert session.reason == "Token is invalid or has been logged out"

    @pytest.mark.asyncio
    async def test_stored_expiry_wins(self):
        token, _ = create_access_token(7, "budi@example.com")
        conn = session_db(token, token_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))

        with patch_db(conn, 'app.core.middleware'):
            session = await load_session(token)

        assert session.reason == "Token has expired, please log in again"

    @pytest.mark.asyncio
    async def test_inactive_account(self):
        token, _ = create_access_token(7, "budi@example.com")

        with patch_db(session_db(token, status="inactive"), 'app.core.middleware'):
            session = await load_session(token)

        assert session.reason == "Account is inactive"


class TestBearerMiddleware:
    """GET /api/auth/me with a real bearer token"""

    @pytest.mark.asyncio
    async def test_me_with_valid_token(self, client: AsyncClient, db: MockDBConnection):
        token, _ = create_access_token(7, "budi@example.com")
        db.set_fetchrow_return("FROM users", UserFactory.create(
            id=7, email="budi@example.com", api_token=token,
            token_expires_at=datetime.now(timezone.utc) + timedelta(hours=1)
        ))
        me = UserWithRoles(id=7, name="Budi", email="budi@example.com", roles=["User"])

        with patch('app.services.auth_service.get_me', new_callable=AsyncMock, return_value=me) as mock:
            response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["data"]["roles"] == ["User"]
        mock.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_revoked_token_is_401(self, client: AsyncClient, db: MockDBConnection):
        token, _ = create_access_token(7, "budi@example.com")
        db.set_fetchrow_return("FROM users", UserFactory.create(id=7, api_token="another-token"))

        response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Token is invalid or has been logged out"}

    @pytest.mark.asyncio
    async def test_no_token_is_401(self, client: AsyncClient):
        response = await client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["message"] == "Authentication required"


def login_db(existing=None, status: str = "active") -> MockDBConnection:
    conn = MockDBConnection()
    conn.set_fetchrow_return("WHERE firebase_uid = $1 OR", existing)
    conn.set_fetchval_return("INSERT INTO users", 11)
    conn.set_fetchval_return("SELECT id FROM roles WHERE name", 4)
    conn.set_fetchval_return("SELECT status FROM users", status)
    conn.set_fetchrow_return("FROM users WHERE id", lambda user_id: UserFactory.create(
        id=user_id, name="Budi", email="budi@example.com"
    ))
    conn.set_fetch_return("JOIN permissions p", [{"name": "event.view"}, {"name": "tiket.view"}])
    conn.set_fetch_return("JOIN roles r", [{"name": "User"}])
    return conn


class TestFirebaseLogin:

    @pytest.mark.asyncio
    async def test_new_identity_becomes_user(self):
        conn = login_db()

        with patch('app.services.firebase_service.verify_id_token', new_callable=AsyncMock, return_value=identity()):
            with patch_db(conn, 'app.services.auth_service'):
                result = await auth_service.firebase_login("firebase-id-token")

        assert result.user.id == 11
        assert result.user.roles == ["User"]
        assert result.token_type == "bearer"
        assert verify_access_token(result.token)["user_id"] == 11
        assert conn.was_called_with("execute", "INSERT INTO user_roles")
        assert conn.was_called_with("execute", "SET api_token = $1")

    @pytest.mark.asyncio
    async def test_existing_email_is_linked(self):
        conn = login_db(existing={"id": 5, "firebase_uid": None})

        with patch('app.services.firebase_service.verify_id_token', new_callable=AsyncMock, return_value=identity()):
            with patch_db(conn, 'app.services.auth_service'):
                result = await auth_service.firebase_login("firebase-id-token")

        assert result.user.id == 5
        assert conn.was_called_with("execute", "SET firebase_uid = $1")
        assert not conn.was_called_with("fetchval", "INSERT INTO users")

    @pytest.mark.asyncio
    async def test_inactive_user_is_refused(self):
        conn = login_db(existing={"id": 5, "firebase_uid": "firebase-abc"}, status="inactive")

        with patch('app.services.firebase_service.verify_id_token', new_callable=AsyncMock, return_value=identity()):
            with patch_db(conn, 'app.services.auth_service'):
                with pytest.raises(AuthorizationError):
                    await auth_service.firebase_login("firebase-id-token")

        assert not conn.was_called_with("execute", "SET api_token = $1")

    @pytest.mark.asyncio
    async def test_identity_without_email_cannot_register(self):
        conn = login_db()

        with patch('app.services.firebase_service.verify_id_token', new_callable=AsyncMock,
                   return_value=identity(email=None)):
            with patch_db(conn, 'app.services.auth_service'):
                with pytest.raises(AuthorizationError):
                    await auth_service.firebase_login("firebase-id-token")

    @pytest.mark.asyncio
    async def test_rejected_firebase_token_endpoint(self, client: AsyncClient):
        with patch('app.services.firebase_service.verify_id_token', new_callable=AsyncMock,
                   side_effect=AuthenticationError("Invalid Firebase token")):
            response = await client.post("/api/auth/firebase", json={"firebase_token": "bad"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid Firebase token"

    @pytest.mark.asyncio
    async def test_missing_firebase_token(self, client: AsyncClient):
        response = await client.post("/api/auth/firebase", json={})

        assert response.status_code == 422
        assert "firebase_token" in response.json()["errors"]


class TestLogout:

    @pytest.mark.asyncio
    async def test_logout_clears_token_and_cached_claims(self, client: AsyncClient, login_as, fresh_permission_cache):
        login_as(3, Role.USER)
        conn = MockDBConnection()

        with patch_db(conn, 'app.services.auth_service'):
            response = await client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json()["message"] == "Logged out successfully"
        assert conn.was_called_with("execute", "SET api_token = NULL")
        assert len(fresh_permission_cache) == 0

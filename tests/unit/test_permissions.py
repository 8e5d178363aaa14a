"""
Tests for capabilities, the permission cache and role management.
"""
import pytest
from httpx import AsyncClient
from unittest.mock import patch, AsyncMock

from app.core.permissions import (
    Capability, Role, SubjectClaims, PermissionCache, DEFAULT_ROLE_CAPABILITIES
)
from app.core.exceptions import AuthorizationError, ConflictError
from app.models.role import RoleUpdate
from app.services import roles_service
from tests.utils.mocks import MockDBConnection, patch_db


class TestSubjectClaims:

    def test_build_ignores_unknown_capabilities(self):
        claims = SubjectClaims.build(5, ["EO"], ["event.create", "pamflet.create", "tiket.scan"])

        assert claims.capabilities == frozenset({Capability.EVENT_CREATE, Capability.TIKET_SCAN})
        assert claims.has_role(Role.EO)
        assert not claims.is_admin

    def test_to_dict_is_sorted(self):
        claims = SubjectClaims.build(5, ["User", "EO"], ["tiket.view", "event.view"])

        assert claims.to_dict() == {"roles": ["EO", "User"], "permissions": ["event.view", "tiket.view"]}

    def test_default_grants(self):
        assert DEFAULT_ROLE_CAPABILITIES[Role.ADMIN] == frozenset(Capability)
        assert Capability.TIKET_SCAN in DEFAULT_ROLE_CAPABILITIES[Role.PANITIA]
        assert Capability.TRANSAKSI_APPROVE not in DEFAULT_ROLE_CAPABILITIES[Role.EO]
        assert Capability.TIKET_SCAN not in DEFAULT_ROLE_CAPABILITIES[Role.USER]


def claims_db(roles, permissions) -> MockDBConnection:
    conn = MockDBConnection()
    conn.set_fetch_return("JOIN permissions p", [{"name": p} for p in permissions])
    conn.set_fetch_return("JOIN roles r", [{"name": r} for r in roles])
    return conn


class TestPermissionCache:

    @pytest.mark.asyncio
    async def test_claims_are_loaded_once(self):
        conn = claims_db(["Panitia"], ["tiket.scan", "pengecekan.create"])
        cache = PermissionCache()

        with patch_db(conn, 'app.core.permissions'):
            first = await cache.get(4)
            second = await cache.get(4)

        assert first is second
        assert first.has(Capability.TIKET_SCAN)
        assert conn.count_calls("fetch", "JOIN roles r") == 1

    @pytest.mark.asyncio
    async def test_invalidate_one_user(self):
        conn = claims_db(["User"], ["tiket.view"])
        cache = PermissionCache()

        with patch_db(conn, 'app.core.permissions'):
            await cache.get(3)
            await cache.get(4)
            cache.invalidate(3)
            assert len(cache) == 1

            # A grant made after invalidation is visible on the next lookup
            conn.set_fetch_return("JOIN permissions p", [{"name": "tiket.view"}, {"name": "tiket.scan"}])
            refreshed = await cache.get(3)

        assert refreshed.has(Capability.TIKET_SCAN)

    @pytest.mark.asyncio
    async def test_invalidate_everything(self):
        conn = claims_db(["User"], [])
        cache = PermissionCache()

        with patch_db(conn, 'app.core.permissions'):
            await cache.get(3)
            await cache.get(4)

        cache.invalidate()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_uses_given_connection(self):
        conn = claims_db(["EO"], ["event.create"])

        claims = await PermissionCache().get(2, conn=conn)

        assert claims.has(Capability.EVENT_CREATE)

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self):
        conn = claims_db(["User"], ["tiket.view"])
        cache = PermissionCache(max_entries=2)

        await cache.get(1, conn=conn)
        await cache.get(2, conn=conn)
        await cache.get(1, conn=conn)
        await cache.get(3, conn=conn)

        assert len(cache) == 2
        assert conn.count_calls("fetch", "JOIN roles r") == 3

        # 2 was evicted and has to be loaded again, 1 is still cached
        await cache.get(1, conn=conn)
        assert conn.count_calls("fetch", "JOIN roles r") == 3
        await cache.get(2, conn=conn)
        assert conn.count_calls("fetch", "JOIN roles r") == 4


def role_db(name: str) -> MockDBConnection:
    conn = MockDBConnection()
    conn.set_fetchrow_return("FROM roles WHERE id", {"id": 7, "name": name, "created_at": None, "updated_at": None})
    return conn


class TestRoles:

    @pytest.mark.asyncio
    async def test_system_role_cannot_be_renamed(self):
        conn = role_db("Panitia")

        with patch_db(conn, 'app.services.roles_service'):
            with pytest.raises(AuthorizationError):
                await roles_service.update_role(7, RoleUpdate(name="Crew"), PermissionCache())

        assert not conn.was_called_with("execute", "UPDATE roles")

    @pytest.mark.asyncio
    async def test_role_in_use_cannot_be_deleted(self):
        conn = role_db("Usher")
        conn.set_fetchval_return("FROM user_roles", 3)

        with patch_db(conn, 'app.services.roles_service'):
            with pytest.raises(ConflictError) as exc_info:
                await roles_service.delete_role(7, PermissionCache())

        assert "3 user(s)" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_role_change_clears_cache(self):
        conn = role_db("Usher")
        conn.set_fetch_return("FROM permissions WHERE name", [{"id": 1, "name": "tiket.scan"}])
        cache = PermissionCache()

        await cache.get(9, conn=claims_db(["Usher"], []))

        with patch_db(conn, 'app.services.roles_service'):
            role = await roles_service.update_role(7, RoleUpdate(permissions=["tiket.scan"]), cache)

        assert role.is_system is False
        assert len(cache) == 0


class TestRoleEndpoints:

    @pytest.mark.asyncio
    async def test_roles_are_admin_only(self, client: AsyncClient, login_as):
        login_as(2, Role.EO)

        response = await client.get("/api/roles")

        assert response.status_code == 403
        assert response.json()["errors"]["required_roles"] == ["Admin"]

    @pytest.mark.asyncio
    async def test_admin_lists_roles(self, client: AsyncClient, login_as):
        login_as(1, Role.ADMIN)

        with patch('app.services.roles_service.list_roles', new_callable=AsyncMock, return_value=[]):
            response = await client.get("/api/roles")

        assert response.status_code == 200
        assert response.json()["success"] is True

"""
Role and capability model.

Capabilities are a closed, enumerated set. Roles grant capabilities and
users may additionally hold capabilities directly. Route guards work on
a typed SubjectClaims object built once per request, resolved through the
PermissionCache that lives on the application state.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from app.database import get_db_connection

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    EVENT_VIEW = "event.view"
    EVENT_CREATE = "event.create"
    EVENT_UPDATE = "event.update"
    EVENT_DELETE = "event.delete"
    EVENT_VIEW_ALL = "event.view-all"

    TIKET_VIEW = "tiket.view"
    TIKET_SCAN = "tiket.scan"
    TIKET_VERIFY = "tiket.verify"

    JENIS_TIKET_VIEW = "jenis-tiket.view"
    JENIS_TIKET_CREATE = "jenis-tiket.create"
    JENIS_TIKET_UPDATE = "jenis-tiket.update"
    JENIS_TIKET_DELETE = "jenis-tiket.delete"

    TRANSAKSI_CREATE = "transaksi.create"
    TRANSAKSI_VIEW = "transaksi.view"
    TRANSAKSI_VIEW_ALL = "transaksi.view-all"
    TRANSAKSI_APPROVE = "transaksi.approve"
    TRANSAKSI_REJECT = "transaksi.reject"

    USER_VIEW = "user.view"
    USER_CREATE = "user.create"
    USER_UPDATE = "user.update"
    USER_DELETE = "user.delete"
    USER_MANAGE_ROLES = "user.manage-roles"

    PENGECEKAN_VIEW = "pengecekan.view"
    PENGECEKAN_CREATE = "pengecekan.create"

    @classmethod
    def parse(cls, value: str) -> Optional["Capability"]:
        try:
            return cls(value)
        except ValueError:
            return None


class Role(str, Enum):
    ADMIN = "Admin"
    EO = "EO"
    PANITIA = "Panitia"
    USER = "User"


SYSTEM_ROLES = frozenset(r.value for r in Role)

# Seed grants for the system roles
DEFAULT_ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.EO: frozenset({
        Capability.EVENT_VIEW, Capability.EVENT_CREATE, Capability.EVENT_UPDATE, Capability.EVENT_DELETE,
        Capability.JENIS_TIKET_VIEW, Capability.JENIS_TIKET_CREATE,
        Capability.JENIS_TIKET_UPDATE, Capability.JENIS_TIKET_DELETE,
        Capability.TIKET_VIEW, Capability.TIKET_SCAN, Capability.TIKET_VERIFY,
        Capability.TRANSAKSI_VIEW,
        Capability.PENGECEKAN_VIEW,
        Capability.USER_VIEW,
    }),
    Role.PANITIA: frozenset({
        Capability.EVENT_VIEW, Capability.TIKET_VIEW, Capability.TIKET_SCAN, Capability.TIKET_VERIFY,
        Capability.PENGECEKAN_VIEW, Capability.PENGECEKAN_CREATE,
    }),
    Role.USER: frozenset({
        Capability.EVENT_VIEW, Capability.JENIS_TIKET_VIEW, Capability.TIKET_VIEW,
        Capability.TRANSAKSI_CREATE, Capability.TRANSAKSI_VIEW,
    }),
}


@dataclass(frozen=True)
class SubjectClaims:
    """What an authenticated user is, and what they may do"""
    user_id: int
    roles: FrozenSet[str] = field(default_factory=frozenset)
    capabilities: FrozenSet[Capability] = field(default_factory=frozenset)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def has_any(self, *capabilities: Capability) -> bool:
        return any(c in self.capabilities for c in capabilities)

    def has_role(self, role: Role) -> bool:
        return role.value in self.roles

    def has_any_role(self, *roles: Role) -> bool:
        return any(r.value in self.roles for r in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_role(Role.ADMIN)

    def to_dict(self) -> dict:
        return {
            "roles": sorted(self.roles),
            "permissions": sorted(c.value for c in self.capabilities),
        }

    @classmethod
    def build(cls, user_id: int, roles: Iterable[str], capability_names: Iterable[str]) -> "SubjectClaims":
        capabilities = set()
        for name in capability_names:
            cap = Capability.parse(name)
            if cap is None:
                # Custom permission rows created at runtime are not guardable
                logger.debug(f"Ignoring unknown capability '{name}' for user {user_id}")
                continue
            capabilities.add(cap)
        return cls(user_id=user_id, roles=frozenset(roles), capabilities=frozenset(capabilities))


async def load_claims(conn, user_id: int) -> SubjectClaims:
    """Resolve roles plus role and direct capabilities for a user"""
    role_rows = await conn.fetch("""
        SELECT r.name
        FROM user_roles ur
        JOIN roles r ON r.id = ur.role_id
        WHERE ur.user_id = $1
    """, user_id)

    permission_rows = await conn.fetch("""
        SELECT p.name
        FROM user_roles ur
        JOIN role_permissions rp ON rp.role_id = ur.role_id
        JOIN permissions p ON p.id = rp.permission_id
        WHERE ur.user_id = $1
        UNION
        SELECT p.name
        FROM user_permissions up
        JOIN permissions p ON p.id = up.permission_id
        WHERE up.user_id = $1
    """, user_id)

    return SubjectClaims.build(
        user_id,
        [row['name'] for row in role_rows],
        [row['name'] for row in permission_rows],
    )


class PermissionCache:
    """
    Per-user claims cache, least recently used entries evicted first.

    Held on app.state, so each worker process has its own copy. Every role
    or permission write must call invalidate() after its unit of work
    commits; a write served by one worker does not reach the others, whose
    entries stay stale until evicted or the worker restarts.
    """

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._claims: Dict[int, SubjectClaims] = OrderedDict()

    async def get(self, user_id: int, conn=None) -> SubjectClaims:
        cached = self._claims.get(user_id)
        if cached is not None:
            self._claims.move_to_end(user_id)
            return cached

        if conn is not None:
            claims = await load_claims(conn, user_id)
        else:
            async with get_db_connection(use_transaction=False) as own_conn:
                claims = await load_claims(own_conn, user_id)

        self._claims[user_id] = claims
        while len(self._claims) > self.max_entries:
            self._claims.popitem(last=False)
        return claims

    def invalidate(self, user_id: Optional[int] = None) -> None:
        """Drop one user's claims, or everything when a role definition changed"""
        if user_id is None:
            self._claims.clear()
            logger.info("Permission cache cleared")
        else:
            self._claims.pop(user_id, None)
            logger.debug(f"Permission cache invalidated for user {user_id}")

    def __len__(self) -> int:
        return len(self._claims)

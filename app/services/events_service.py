import logging
import re
from typing import Optional, List
from datetime import datetime, timezone
from app.database import get_db_connection
from app.models.event import (
    Event, EventCreate, EventUpdate, EventSummary, EventMember, EventTimeFilter
)
from app.models.ticket_type import TicketType
from app.models.common import Page
from app.core.exceptions import NotFoundError, ConflictError, AuthorizationError, ValidationError
from app.core.permissions import Role, SubjectClaims

logger = logging.getLogger(__name__)


def generate_slug(name: str) -> str:
    """Generate URL-friendly slug from event name"""
    slug = name.lower().strip()
    slug = re.sub(r'[áàäâ]', 'a', slug)
    slug = re.sub(r'[éèëê]', 'e', slug)
    slug = re.sub(r'[íìïî]', 'i', slug)
    slug = re.sub(r'[óòöô]', 'o', slug)
    slug = re.sub(r'[úùüû]', 'u', slug)
    slug = re.sub(r'[ñ]', 'n', slug)
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    slug = re.sub(r'[\s_]+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    slug = slug.strip('-')
    return slug or "event"


async def unique_slug(conn, name: str, exclude_event_id: Optional[int] = None) -> str:
    """Slug for name, suffixed -1, -2, ... until no other event uses it"""
    base = generate_slug(name)
    rows = await conn.fetch("""
        SELECT slug FROM events
        WHERE (slug = $1 OR slug LIKE $1 || '-%')
          AND ($2::int IS NULL OR id <> $2)
    """, base, exclude_event_id)
    taken = {r['slug'] for r in rows}

    if base not in taken:
        return base

    counter = 1
    while f"{base}-{counter}" in taken:
        counter += 1
    return f"{base}-{counter}"


def is_finished(event_row) -> bool:
    end_time = event_row['end_time']
    return end_time is not None and end_time < datetime.now(timezone.utc)


_SUMMARY_SELECT = """
    SELECT e.*,
           owner.user_id AS owner_id,
           ou.name AS owner_name,
           (SELECT MIN(tt.price) FROM ticket_types tt WHERE tt.event_id = e.id) AS min_price,
           (SELECT MAX(tt.price) FROM ticket_types tt WHERE tt.event_id = e.id) AS max_price,
           (SELECT COALESCE(SUM(tt.quota), 0) FROM ticket_types tt WHERE tt.event_id = e.id) AS total_quota
    FROM events e
    LEFT JOIN event_users owner ON owner.event_id = e.id AND owner.is_owner
    LEFT JOIN users ou ON ou.id = owner.user_id
"""


def _time_filter_sql(time_filter: Optional[EventTimeFilter]) -> Optional[str]:
    if time_filter == EventTimeFilter.UPCOMING:
        return "e.start_time > NOW()"
    if time_filter == EventTimeFilter.ONGOING:
        return "e.start_time <= NOW() AND e.end_time >= NOW()"
    if time_filter == EventTimeFilter.PAST:
        return "e.end_time < NOW()"
    return None


async def list_events(
    claims: Optional[SubjectClaims] = None,
    time_filter: Optional[EventTimeFilter] = None,
    is_paid: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = 1,
    per_page: int = 20
) -> Page:
    """
    List events.

    Admins and regular users see every event. An EO without the Admin role
    sees only the events they own.
    """
    where = ["1=1"]
    params = []
    idx = 1

    if claims and claims.has_role(Role.EO) and not claims.is_admin:
        where.append(f"owner.user_id = ${idx}")
        params.append(claims.user_id)
        idx += 1

    time_sql = _time_filter_sql(time_filter)
    if time_sql:
        where.append(time_sql)

    if is_paid is not None:
        where.append(f"e.is_paid = ${idx}")
        params.append(is_paid)
        idx += 1

    if search:
        where.append(f"(e.name ILIKE ${idx} OR e.venue ILIKE ${idx} OR e.description ILIKE ${idx})")
        params.append(f"%{search}%")
        idx += 1

    where_sql = " AND ".join(where)

    async with get_db_connection(use_transaction=False) as conn:
        total = await conn.fetchval(f"""
            SELECT COUNT(*) FROM events e
            LEFT JOIN event_users owner ON owner.event_id = e.id AND owner.is_owner
            WHERE {where_sql}
        """, *params)

        rows = await conn.fetch(f"""
            {_SUMMARY_SELECT}
            WHERE {where_sql}
            ORDER BY e.start_time DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """, *params, per_page, (page - 1) * per_page)

    total = total or 0
    return Page(
        items=[EventSummary(**dict(r)) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
        last_page=max(1, -(-total // per_page)),
    )


async def list_public_events() -> List[dict]:
    """Upcoming events with their ticket types, cheapest first"""
    async with get_db_connection(use_transaction=False) as conn:
        rows = await conn.fetch(f"""
            {_SUMMARY_SELECT}
            WHERE e.start_time >= NOW()
            ORDER BY e.start_time ASC
        """)
        event_ids = [r['id'] for r in rows]
        type_rows = await conn.fetch("""
            SELECT * FROM ticket_types
            WHERE event_id = ANY($1::int[])
            ORDER BY price ASC
        """, event_ids) if event_ids else []

    types_by_event = {}
    for t in type_rows:
        types_by_event.setdefault(t['event_id'], []).append(TicketType(**dict(t)))

    return [
        {**EventSummary(**dict(r)).model_dump(), "ticket_types": types_by_event.get(r['id'], [])}
        for r in rows
    ]


async def get_event(slug_or_id: str) -> EventSummary:
    """Get event by slug, falling back to numeric id"""
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow(f"{_SUMMARY_SELECT} WHERE e.slug = $1", slug_or_id)
        if not row and slug_or_id.isdigit():
            row = await conn.fetchrow(f"{_SUMMARY_SELECT} WHERE e.id = $1", int(slug_or_id))

    if not row:
        raise NotFoundError("Event not found")
    return EventSummary(**dict(row))


async def fetch_event_row(conn, event_id: int, for_update: bool = False):
    lock = " FOR UPDATE" if for_update else ""
    row = await conn.fetchrow(f"SELECT * FROM events WHERE id = $1{lock}", event_id)
    if not row:
        raise NotFoundError("Event not found")
    return row


async def get_owner_id(conn, event_id: int) -> Optional[int]:
    return await conn.fetchval(
        "SELECT user_id FROM event_users WHERE event_id = $1 AND is_owner", event_id
    )


async def is_event_owner(conn, event_id: int, user_id: int) -> bool:
    return await get_owner_id(conn, event_id) == user_id


async def ensure_can_manage(conn, event_id: int, claims: SubjectClaims) -> None:
    """Only the event owner or an Admin may change an event"""
    if claims.is_admin:
        return
    if not await is_event_owner(conn, event_id, claims.user_id):
        raise AuthorizationError("Only the event owner can manage this event")


async def create_event(data: EventCreate, claims: SubjectClaims) -> Event:
    """Create an event; the creator becomes its owner"""
    async with get_db_connection() as conn:
        slug = await unique_slug(conn, data.name)
        row = await conn.fetchrow("""
            INSERT INTO events (name, slug, description, venue, start_time, end_time, is_paid, banner)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *
        """, data.name, slug, data.description, data.venue,
            data.start_time, data.end_time, data.is_paid, data.banner)

        await conn.execute("""
            INSERT INTO event_users (event_id, user_id, is_owner)
            VALUES ($1, $2, TRUE)
        """, row['id'], claims.user_id)

    logger.info(f"Event created: {row['id']} ({slug}) by user {claims.user_id}")
    return Event(**dict(row))


async def update_event(event_id: int, data: EventUpdate, claims: SubjectClaims) -> Event:
    updates = data.model_dump(exclude_unset=True, exclude_none=True)

    async with get_db_connection() as conn:
        current = await fetch_event_row(conn, event_id, for_update=True)
        await ensure_can_manage(conn, event_id, claims)

        start_time = updates.get('start_time') or current['start_time']
        end_time = updates.get('end_time') or current['end_time']
        if end_time < start_time:
            raise ValidationError("Validation error", {"end_time": ["end_time must not be before start_time"]})

        if 'name' in updates and updates['name'] != current['name']:
            updates['slug'] = await unique_slug(conn, updates['name'], exclude_event_id=event_id)

        if not updates:
            return Event(**dict(current))

        sets = []
        params = []
        for i, (field, value) in enumerate(updates.items(), start=1):
            sets.append(f"{field} = ${i}")
            params.append(value)
        params.append(event_id)

        row = await conn.fetchrow(f"""
            UPDATE events SET {', '.join(sets)}, updated_at = NOW()
            WHERE id = ${len(params)}
            RETURNING *
        """, *params)

    logger.info(f"Event {event_id} updated by user {claims.user_id}: {list(updates)}")
    return Event(**dict(row))


async def delete_event(event_id: int, claims: SubjectClaims) -> None:
    """Delete an event after detaching every user association"""
    async with get_db_connection() as conn:
        await fetch_event_row(conn, event_id, for_update=True)
        await ensure_can_manage(conn, event_id, claims)

        await conn.execute("DELETE FROM event_users WHERE event_id = $1", event_id)
        # Tickets and scan records cascade from their transactions
        await conn.execute("""
            DELETE FROM transactions WHERE ticket_type_id IN (
                SELECT id FROM ticket_types WHERE event_id = $1
            )
        """, event_id)
        await conn.execute("DELETE FROM ticket_types WHERE event_id = $1", event_id)
        await conn.execute("DELETE FROM events WHERE id = $1", event_id)

    logger.info(f"Event {event_id} deleted by user {claims.user_id}")


async def get_ticket_types(event_id: int) -> List[TicketType]:
    async with get_db_connection(use_transaction=False) as conn:
        await fetch_event_row(conn, event_id)
        rows = await conn.fetch(
            "SELECT * FROM ticket_types WHERE event_id = $1 ORDER BY price ASC, id ASC", event_id
        )
    return [TicketType(**dict(r)) for r in rows]


async def list_members(event_id: int, claims: SubjectClaims) -> dict:
    """Owner and committee members of an event"""
    async with get_db_connection(use_transaction=False) as conn:
        event = await fetch_event_row(conn, event_id)
        await ensure_can_manage(conn, event_id, claims)

        rows = await conn.fetch("""
            SELECT eu.user_id, u.name, u.email, eu.is_owner, eu.created_at
            FROM event_users eu
            JOIN users u ON u.id = eu.user_id
            WHERE eu.event_id = $1
            ORDER BY eu.is_owner DESC, u.name ASC
        """, event_id)

    members = [EventMember(**dict(r)) for r in rows]
    return {
        "event_id": event_id,
        "event_name": event['name'],
        "owner": next((m for m in members if m.is_owner), None),
        "panitia": [m for m in members if not m.is_owner],
    }


async def add_panitia(event_id: int, user_id: int, claims: SubjectClaims) -> EventMember:
    async with get_db_connection() as conn:
        await fetch_event_row(conn, event_id)
        await ensure_can_manage(conn, event_id, claims)

        user = await conn.fetchrow("SELECT id, name, email FROM users WHERE id = $1", user_id)
        if not user:
            raise NotFoundError("User not found")

        existing = await conn.fetchrow(
            "SELECT is_owner FROM event_users WHERE event_id = $1 AND user_id = $2", event_id, user_id
        )
        if existing:
            role = "Owner" if existing['is_owner'] else "Panitia"
            raise ConflictError(f"User already assigned to this event as {role}")

        row = await conn.fetchrow("""
            INSERT INTO event_users (event_id, user_id, is_owner)
            VALUES ($1, $2, FALSE)
            RETURNING created_at
        """, event_id, user_id)

    logger.info(f"Panitia {user_id} added to event {event_id} by {claims.user_id}")
    return EventMember(user_id=user['id'], name=user['name'], email=user['email'],
                       is_owner=False, created_at=row['created_at'])


async def remove_panitia(event_id: int, user_id: int, claims: SubjectClaims) -> None:
    async with get_db_connection() as conn:
        await fetch_event_row(conn, event_id)
        await ensure_can_manage(conn, event_id, claims)

        existing = await conn.fetchrow(
            "SELECT is_owner FROM event_users WHERE event_id = $1 AND user_id = $2", event_id, user_id
        )
        if not existing:
            raise NotFoundError("User is not assigned to this event")
        if existing['is_owner']:
            raise ConflictError("The event owner cannot be removed; transfer ownership first")

        await conn.execute(
            "DELETE FROM event_users WHERE event_id = $1 AND user_id = $2 AND NOT is_owner",
            event_id, user_id
        )

    logger.info(f"Panitia {user_id} removed from event {event_id} by {claims.user_id}")


async def transfer_ownership(
    event_id: int,
    new_owner_id: int,
    claims: SubjectClaims,
    keep_as_panitia: bool = True
) -> dict:
    """
    Move the single owner flag to another EO or Admin user.

    Demotion runs before promotion so the one-owner index holds at every
    statement.
    """
    async with get_db_connection() as conn:
        event = await fetch_event_row(conn, event_id, for_update=True)
        await ensure_can_manage(conn, event_id, claims)

        new_owner = await conn.fetchrow("SELECT id, name FROM users WHERE id = $1", new_owner_id)
        if not new_owner:
            raise NotFoundError("User not found")

        qualifies = await conn.fetchval("""
            SELECT EXISTS (
                SELECT 1 FROM user_roles ur JOIN roles r ON r.id = ur.role_id
                WHERE ur.user_id = $1 AND r.name = ANY($2::text[])
            )
        """, new_owner_id, [Role.EO.value, Role.ADMIN.value])
        if not qualifies:
            raise ValidationError("Validation error", {"new_owner_id": ["New owner must have EO or Admin role"]})

        old_owner_id = await get_owner_id(conn, event_id)
        if old_owner_id == new_owner_id:
            raise ConflictError("User is already the owner of this event")

        if old_owner_id is not None:
            if keep_as_panitia:
                await conn.execute(
                    "UPDATE event_users SET is_owner = FALSE WHERE event_id = $1 AND user_id = $2",
                    event_id, old_owner_id
                )
            else:
                await conn.execute(
                    "DELETE FROM event_users WHERE event_id = $1 AND user_id = $2",
                    event_id, old_owner_id
                )

        await conn.execute("""
            INSERT INTO event_users (event_id, user_id, is_owner)
            VALUES ($1, $2, TRUE)
            ON CONFLICT (event_id, user_id) DO UPDATE SET is_owner = TRUE
        """, event_id, new_owner_id)

    logger.info(f"Event {event_id} ownership transferred {old_owner_id} -> {new_owner_id}")
    return {
        "event_id": event_id,
        "event_name": event['name'],
        "old_owner_id": old_owner_id,
        "new_owner_id": new_owner_id,
        "new_owner_name": new_owner['name'],
    }


async def get_managed_events(user_id: int) -> dict:
    """Events where the user is owner or committee member"""
    async with get_db_connection(use_transaction=False) as conn:
        rows = await conn.fetch("""
            SELECT e.*, eu.is_owner
            FROM event_users eu
            JOIN events e ON e.id = eu.event_id
            WHERE eu.user_id = $1
            ORDER BY e.start_time DESC
        """, user_id)

    events = [EventSummary(**dict(r)) for r in rows]
    return {
        "events": events,
        "summary": {
            "total": len(events),
            "as_owner": sum(1 for e in events if e.is_owner),
            "as_panitia": sum(1 for e in events if not e.is_owner),
        },
    }

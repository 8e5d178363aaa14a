import logging
from typing import Optional, List
from app.database import get_db_connection
from app.models.ticket_type import TicketType, TicketTypeCreate, TicketTypeUpdate, TicketTypeAvailability
from app.core.exceptions import NotFoundError, ConflictError
from app.core.permissions import SubjectClaims
from app.services.events_service import fetch_event_row, ensure_can_manage, is_finished

logger = logging.getLogger(__name__)

ALMOST_GONE_THRESHOLD = 10


# Quota ledger

def is_available(quota: int, quantity: int = 1) -> bool:
    return quota >= quantity


def availability_label(quota: int) -> str:
    if quota <= 0:
        return "Sold Out"
    if quota < ALMOST_GONE_THRESHOLD:
        return "Almost Gone"
    return "Available"


def can_be_purchased(quota: int, quantity: int, event_row) -> bool:
    """Enough quota and the event has not finished yet"""
    return is_available(quota, quantity) and not is_finished(event_row)


async def decrease_quota(conn, ticket_type_id: int, quantity: int) -> int:
    """
    Atomically take quantity units from the ledger.

    The conditional update is the only guard against overselling: when two
    writers race for the last units, one of them matches no row and gets
    ConflictError. Returns the remaining quota.
    """
    remaining = await conn.fetchval("""
        UPDATE ticket_types
        SET quota = quota - $2, updated_at = NOW()
        WHERE id = $1 AND quota >= $2
        RETURNING quota
    """, ticket_type_id, quantity)

    if remaining is None:
        logger.warning(f"Insufficient quota on ticket type {ticket_type_id} for {quantity} tickets")
        raise ConflictError("Insufficient ticket quota", {"ticket_type_id": ticket_type_id, "requested": quantity})

    return remaining


async def increase_quota(conn, ticket_type_id: int, quantity: int) -> int:
    return await conn.fetchval("""
        UPDATE ticket_types
        SET quota = quota + $2, updated_at = NOW()
        WHERE id = $1
        RETURNING quota
    """, ticket_type_id, quantity)


async def fetch_ticket_type_row(conn, ticket_type_id: int, for_update: bool = False):
    lock = " FOR UPDATE" if for_update else ""
    row = await conn.fetchrow(f"SELECT * FROM ticket_types WHERE id = $1{lock}", ticket_type_id)
    if not row:
        raise NotFoundError("Ticket type not found")
    return row


# CRUD

async def list_ticket_types(event_id: Optional[int] = None) -> List[TicketType]:
    async with get_db_connection(use_transaction=False) as conn:
        if event_id is not None:
            rows = await conn.fetch(
                "SELECT * FROM ticket_types WHERE event_id = $1 ORDER BY price ASC, id ASC", event_id
            )
        else:
            rows = await conn.fetch("SELECT * FROM ticket_types ORDER BY event_id, price ASC, id ASC")
    return [TicketType(**dict(r)) for r in rows]


async def get_ticket_type(ticket_type_id: int) -> dict:
    async with get_db_connection(use_transaction=False) as conn:
        row = await fetch_ticket_type_row(conn, ticket_type_id)
        event = await fetch_event_row(conn, row['event_id'])

    return {
        **TicketType(**dict(row)).model_dump(),
        "event_name": event['name'],
        "event_slug": event['slug'],
        "availability": availability_label(row['quota']),
        "is_free": row['price'] == 0,
    }


async def check_availability(ticket_type_id: int, quantity: int = 1) -> TicketTypeAvailability:
    async with get_db_connection(use_transaction=False) as conn:
        row = await fetch_ticket_type_row(conn, ticket_type_id)
        event = await fetch_event_row(conn, row['event_id'])

    return TicketTypeAvailability(
        ticket_type_id=ticket_type_id,
        quota=row['quota'],
        requested=quantity,
        is_available=is_available(row['quota'], quantity),
        can_be_purchased=can_be_purchased(row['quota'], quantity, event),
        availability=availability_label(row['quota']),
    )


async def create_ticket_type(data: TicketTypeCreate, claims: SubjectClaims) -> TicketType:
    async with get_db_connection() as conn:
        await fetch_event_row(conn, data.event_id)
        await ensure_can_manage(conn, data.event_id, claims)

        row = await conn.fetchrow("""
            INSERT INTO ticket_types (event_id, name, price, quota)
            VALUES ($1, $2, $3, $4)
            RETURNING *
        """, data.event_id, data.name, data.price, data.quota)

    logger.info(f"Ticket type {row['id']} created for event {data.event_id}")
    return TicketType(**dict(row))


async def update_ticket_type(ticket_type_id: int, data: TicketTypeUpdate, claims: SubjectClaims) -> TicketType:
    updates = data.model_dump(exclude_unset=True, exclude_none=True)

    async with get_db_connection() as conn:
        current = await fetch_ticket_type_row(conn, ticket_type_id, for_update=True)
        await ensure_can_manage(conn, current['event_id'], claims)

        if not updates:
            return TicketType(**dict(current))

        sets = []
        params = []
        for i, (field, value) in enumerate(updates.items(), start=1):
            sets.append(f"{field} = ${i}")
            params.append(value)
        params.append(ticket_type_id)

        row = await conn.fetchrow(f"""
            UPDATE ticket_types SET {', '.join(sets)}, updated_at = NOW()
            WHERE id = ${len(params)}
            RETURNING *
        """, *params)

    logger.info(f"Ticket type {ticket_type_id} updated: {list(updates)}")
    return TicketType(**dict(row))


async def delete_ticket_type(ticket_type_id: int, claims: SubjectClaims) -> None:
    async with get_db_connection() as conn:
        current = await fetch_ticket_type_row(conn, ticket_type_id, for_update=True)
        await ensure_can_manage(conn, current['event_id'], claims)

        issued = await conn.fetchval("""
            SELECT EXISTS (
                SELECT 1 FROM transactions
                WHERE ticket_type_id = $1 AND status IN ('paid', 'free')
            )
        """, ticket_type_id)
        if issued:
            raise ConflictError("Cannot delete ticket type with existing paid transactions")

        await conn.execute("DELETE FROM transactions WHERE ticket_type_id = $1", ticket_type_id)
        await conn.execute("DELETE FROM ticket_types WHERE id = $1", ticket_type_id)

    logger.info(f"Ticket type {ticket_type_id} deleted")

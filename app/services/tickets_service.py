"""
Tickets and the check-in engine.

A ticket has two status axes: lifecycle (active -> used | cancelled) and
attendance (not_attended -> attended). Attendance only moves together with
active -> used, so attended always implies used. A scan_history row is
written exactly once per ticket; its UNIQUE(ticket_id) constraint is what
serialises concurrent scans of the same code.
"""
import logging
from typing import Optional, List
from app.database import get_db_connection
from app.models.ticket import (
    Ticket, TicketDetail, TicketStatus, Attendance, TicketValidation, TicketStatistics, AttendedTicket
)
from app.models.scan import CheckInResult, ScanRecord
from app.models.user import UserBrief
from app.models.common import Page
from app.core.exceptions import NotFoundError, ConflictError, AuthorizationError, AlreadyScannedError
from app.core.permissions import Role, SubjectClaims
from app.utils.qr_generator import generate_ticket_codes

logger = logging.getLogger(__name__)

TICKET_DETAIL_SELECT = """
    SELECT tk.*,
           t.order_id, t.user_id AS owner_id,
           u.name AS owner_name, u.email AS owner_email,
           tt.id AS ticket_type_id, tt.name AS ticket_type_name, tt.price,
           e.id AS event_id, e.name AS event_name, e.slug AS event_slug,
           e.venue, e.start_time, e.end_time
    FROM tickets tk
    JOIN transactions t ON t.id = tk.transaction_id
    JOIN users u ON u.id = t.user_id
    JOIN ticket_types tt ON tt.id = t.ticket_type_id
    JOIN events e ON e.id = tt.event_id
"""


def can_be_used(ticket) -> bool:
    return ticket['status'] == TicketStatus.ACTIVE.value and ticket['attendance'] == Attendance.NOT_ATTENDED.value


def unusable_reason(ticket) -> Optional[str]:
    """Why a ticket cannot be checked in, None when it can"""
    if ticket['status'] == TicketStatus.USED.value:
        return "Ticket has already been used"
    if ticket['status'] == TicketStatus.CANCELLED.value:
        return "Ticket has been cancelled"
    if ticket['attendance'] == Attendance.ATTENDED.value:
        return "Ticket holder has already checked in"
    return None


def to_detail(row, with_check_in: bool = False) -> TicketDetail:
    detail = TicketDetail(**dict(row))
    if with_check_in:
        detail.can_check_in = can_be_used(row)
    return detail


async def issue_tickets(conn, transaction_id: int, order_id: str, quantity: int) -> List[Ticket]:
    """
    Create the ticket batch for a confirmed transaction.

    Must run inside the same unit of work as the status change and the
    quota decrement.
    """
    existing = await conn.fetchval(
        "SELECT COUNT(*) FROM tickets WHERE transaction_id = $1", transaction_id
    )
    codes = generate_ticket_codes(order_id, quantity, start=(existing or 0) + 1)

    rows = await conn.fetch("""
        INSERT INTO tickets (transaction_id, qr_code, status, attendance)
        SELECT $1, code, 'active', 'not_attended'
        FROM unnest($2::text[]) AS code
        RETURNING *
    """, transaction_id, codes)

    logger.info(f"Issued {len(rows)} tickets for transaction {transaction_id} ({order_id})")
    return [Ticket(**dict(r)) for r in rows]


async def _fetch_scan(conn, ticket_id: int):
    return await conn.fetchrow("""
        SELECT sh.*, u.name AS scanner_name
        FROM scan_history sh
        LEFT JOIN users u ON u.id = sh.user_id
        WHERE sh.ticket_id = $1
    """, ticket_id)


def _already_scanned(scan, ticket: Optional[TicketDetail] = None) -> AlreadyScannedError:
    data = {
        "scan_history": ScanRecord(**{k: scan[k] for k in ('id', 'ticket_id', 'user_id', 'scan_time')}).model_dump(mode="json"),
        "scanned_by": scan['scanner_name'] or "Unknown",
        "scanned_at": scan['scan_time'].isoformat(),
    }
    if ticket is not None:
        data["ticket"] = ticket.model_dump(mode="json")
    return AlreadyScannedError("Ticket has already been scanned", data=data)


async def check_in(qr_code: str, scanner_id: int) -> CheckInResult:
    """
    Redeem a ticket at the gate.

    1. Unknown code -> NotFoundError
    2. Existing scan record -> AlreadyScannedError with who scanned it and when
    3. Ticket not usable -> ConflictError with the reason
    4. Ticket -> used/attended plus one scan record, atomically
    """
    async with get_db_connection() as conn:
        ticket = await conn.fetchrow(
            "SELECT * FROM tickets WHERE qr_code = $1 FOR UPDATE", qr_code
        )
        if not ticket:
            raise NotFoundError("Invalid QR code")

        detail_row = await conn.fetchrow(f"{TICKET_DETAIL_SELECT} WHERE tk.id = $1", ticket['id'])

        existing = await _fetch_scan(conn, ticket['id'])
        if existing:
            raise _already_scanned(existing, to_detail(detail_row))

        reason = unusable_reason(ticket)
        if reason:
            raise ConflictError(reason, data=to_detail(detail_row).model_dump(mode="json"))

        scan = await conn.fetchrow("""
            INSERT INTO scan_history (ticket_id, user_id, scan_time)
            VALUES ($1, $2, NOW())
            ON CONFLICT (ticket_id) DO NOTHING
            RETURNING *
        """, ticket['id'], scanner_id)

        if scan is None:
            # Lost the race against a concurrent scan of the same ticket
            existing = await _fetch_scan(conn, ticket['id'])
            raise _already_scanned(existing, to_detail(detail_row))

        await conn.execute("""
            UPDATE tickets SET status = 'used', attendance = 'attended'
            WHERE id = $1
        """, ticket['id'])

        updated = await conn.fetchrow(f"{TICKET_DETAIL_SELECT} WHERE tk.id = $1", ticket['id'])
        scanner = await conn.fetchrow("SELECT id, name, email FROM users WHERE id = $1", scanner_id)

    logger.info(f"Ticket {ticket['id']} checked in by user {scanner_id}")

    return CheckInResult(
        scan=ScanRecord(**dict(scan)),
        ticket=to_detail(updated),
        scanner=UserBrief(**dict(scanner)),
    )


async def get_by_qr(qr_code: str) -> dict:
    """Ticket detail for a scanned code, without changing anything"""
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow(f"{TICKET_DETAIL_SELECT} WHERE tk.qr_code = $1", qr_code)
        if not row:
            raise NotFoundError("Invalid QR code")
        scan = await _fetch_scan(conn, row['id'])

    detail = to_detail(row, with_check_in=True)
    if scan:
        detail.can_check_in = False

    return {
        "ticket": detail,
        "can_check_in": detail.can_check_in,
        "scan_history": dict(scan) if scan else None,
    }


async def validate(qr_code: str) -> TicketValidation:
    """Pre-scan check; reports whether a check-in would succeed"""
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow(f"{TICKET_DETAIL_SELECT} WHERE tk.qr_code = $1", qr_code)
        if not row:
            raise NotFoundError("Invalid QR code")
        scan = await _fetch_scan(conn, row['id'])

    detail = to_detail(row, with_check_in=True)

    if scan:
        detail.can_check_in = False
        return TicketValidation(valid=False, message="Ticket has already been scanned",
                                already_scanned=True, ticket=detail)

    reason = unusable_reason(row)
    if reason:
        return TicketValidation(valid=False, message=reason, ticket=detail)

    return TicketValidation(valid=True, message="Ticket is valid and can be used", ticket=detail)


async def can_view_event_tickets(conn, event_id: int, claims: SubjectClaims) -> bool:
    """Admins, Panitia, and members of the event's committee (owner included)"""
    if claims.is_admin or claims.has_role(Role.PANITIA):
        return True
    return bool(await conn.fetchval(
        "SELECT EXISTS (SELECT 1 FROM event_users WHERE event_id = $1 AND user_id = $2)",
        event_id, claims.user_id
    ))


async def get_ticket(ticket_id: int, claims: SubjectClaims) -> TicketDetail:
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow(f"{TICKET_DETAIL_SELECT} WHERE tk.id = $1", ticket_id)
        if not row:
            raise NotFoundError("Ticket not found")

        if row['owner_id'] != claims.user_id and not await can_view_event_tickets(conn, row['event_id'], claims):
            raise AuthorizationError("You can only view your own tickets")

    return to_detail(row, with_check_in=True)


async def get_ticket_code(ticket_id: int, claims: SubjectClaims) -> str:
    """QR payload of a ticket the caller may see"""
    ticket = await get_ticket(ticket_id, claims)
    return ticket.qr_code


async def get_my_tickets(
    user_id: int,
    status: Optional[TicketStatus] = None,
    upcoming: bool = False,
    page: int = 1,
    per_page: int = 10
) -> Page:
    """Tickets from the user's paid or free transactions"""
    where = ["t.user_id = $1", "t.status IN ('paid', 'free')"]
    params = [user_id]
    idx = 2

    if status:
        where.append(f"tk.status = ${idx}")
        params.append(status.value)
        idx += 1

    if upcoming:
        where.append("e.start_time > NOW()")

    where_sql = " AND ".join(where)

    async with get_db_connection(use_transaction=False) as conn:
        total = await conn.fetchval(f"""
            SELECT COUNT(*) FROM tickets tk
            JOIN transactions t ON t.id = tk.transaction_id
            JOIN ticket_types tt ON tt.id = t.ticket_type_id
            JOIN events e ON e.id = tt.event_id
            WHERE {where_sql}
        """, *params)

        rows = await conn.fetch(f"""
            {TICKET_DETAIL_SELECT}
            WHERE {where_sql}
            ORDER BY tk.created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """, *params, per_page, (page - 1) * per_page)

    total = total or 0
    return Page(
        items=[to_detail(r, with_check_in=True) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
        last_page=max(1, -(-total // per_page)),
    )


async def get_event_tickets(
    event_id: int,
    claims: SubjectClaims,
    status: Optional[TicketStatus] = None,
    attendance: Optional[Attendance] = None,
    page: int = 1,
    per_page: int = 15
) -> Page:
    where = ["tt.event_id = $1", "t.status IN ('paid', 'free')"]
    params = [event_id]
    idx = 2

    if status:
        where.append(f"tk.status = ${idx}")
        params.append(status.value)
        idx += 1

    if attendance:
        where.append(f"tk.attendance = ${idx}")
        params.append(attendance.value)
        idx += 1

    where_sql = " AND ".join(where)

    async with get_db_connection(use_transaction=False) as conn:
        exists = await conn.fetchval("SELECT id FROM events WHERE id = $1", event_id)
        if not exists:
            raise NotFoundError("Event not found")
        if not await can_view_event_tickets(conn, event_id, claims):
            raise AuthorizationError("You can only view tickets from your own events")

        total = await conn.fetchval(f"""
            SELECT COUNT(*) FROM tickets tk
            JOIN transactions t ON t.id = tk.transaction_id
            JOIN ticket_types tt ON tt.id = t.ticket_type_id
            WHERE {where_sql}
        """, *params)

        rows = await conn.fetch(f"""
            {TICKET_DETAIL_SELECT}
            WHERE {where_sql}
            ORDER BY tk.created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """, *params, per_page, (page - 1) * per_page)

    total = total or 0
    return Page(
        items=[to_detail(r) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
        last_page=max(1, -(-total // per_page)),
    )


async def get_event_statistics(event_id: int, claims: SubjectClaims) -> TicketStatistics:
    async with get_db_connection(use_transaction=False) as conn:
        exists = await conn.fetchval("SELECT id FROM events WHERE id = $1", event_id)
        if not exists:
            raise NotFoundError("Event not found")
        if not await can_view_event_tickets(conn, event_id, claims):
            raise AuthorizationError("You can only view statistics of your own events")

        row = await conn.fetchrow("""
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE tk.status = 'active') AS active,
                COUNT(*) FILTER (WHERE tk.status = 'used') AS used,
                COUNT(*) FILTER (WHERE tk.status = 'cancelled') AS cancelled,
                COUNT(*) FILTER (WHERE tk.attendance = 'attended') AS checked_in
            FROM tickets tk
            JOIN transactions t ON t.id = tk.transaction_id
            JOIN ticket_types tt ON tt.id = t.ticket_type_id
            WHERE tt.event_id = $1 AND t.status IN ('paid', 'free')
        """, event_id)

    total = row['total'] or 0
    checked_in = row['checked_in'] or 0
    return TicketStatistics(
        event_id=event_id,
        total=total,
        active=row['active'] or 0,
        used=row['used'] or 0,
        cancelled=row['cancelled'] or 0,
        checked_in=checked_in,
        not_checked_in=total - checked_in,
        check_in_percentage=round(checked_in / total * 100, 2) if total else 0.0,
    )


async def get_attended_tickets(
    claims: SubjectClaims,
    event_id: Optional[int] = None,
    page: int = 1,
    per_page: int = 20
) -> Page:
    """
    Checked-in tickets, latest scan first.

    Admins and Panitia see every event; other scanners only the events
    whose committee they belong to.
    """
    where = ["tk.attendance = 'attended'"]
    params = []
    idx = 1

    if event_id is not None:
        where.append(f"tt.event_id = ${idx}")
        params.append(event_id)
        idx += 1

    if not (claims.is_admin or claims.has_role(Role.PANITIA)):
        where.append(f"tt.event_id IN (SELECT event_id FROM event_users WHERE user_id = ${idx})")
        params.append(claims.user_id)
        idx += 1

    where_sql = " AND ".join(where)

    async with get_db_connection(use_transaction=False) as conn:
        total = await conn.fetchval(f"""
            SELECT COUNT(*) FROM tickets tk
            JOIN transactions t ON t.id = tk.transaction_id
            JOIN ticket_types tt ON tt.id = t.ticket_type_id
            WHERE {where_sql}
        """, *params)

        rows = await conn.fetch(f"""
            SELECT d.*, sh.scan_time AS scanned_at, su.name AS scanned_by
            FROM ({TICKET_DETAIL_SELECT} WHERE {where_sql}) d
            LEFT JOIN scan_history sh ON sh.ticket_id = d.id
            LEFT JOIN users su ON su.id = sh.user_id
            ORDER BY sh.scan_time DESC NULLS LAST, d.id DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """, *params, per_page, (page - 1) * per_page)

    total = total or 0
    return Page(
        items=[AttendedTicket(**dict(r)) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
        last_page=max(1, -(-total // per_page)),
    )


async def cancel_ticket(ticket_id: int, claims: SubjectClaims) -> TicketDetail:
    """
    Cancel a single ticket.

    Allowed for Admins, the ticket owner and the event owner. A used ticket
    cannot be cancelled. Quota is not given back.
    """
    async with get_db_connection() as conn:
        ticket = await conn.fetchrow("SELECT * FROM tickets WHERE id = $1 FOR UPDATE", ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")

        row = await conn.fetchrow(f"{TICKET_DETAIL_SELECT} WHERE tk.id = $1", ticket_id)

        if not claims.is_admin and row['owner_id'] != claims.user_id:
            is_event_owner = await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM event_users WHERE event_id = $1 AND user_id = $2 AND is_owner)",
                row['event_id'], claims.user_id
            )
            if not is_event_owner:
                raise AuthorizationError("You can only cancel your own tickets")

        if ticket['status'] == TicketStatus.USED.value:
            raise ConflictError("A used ticket cannot be cancelled")
        if ticket['status'] == TicketStatus.CANCELLED.value:
            raise ConflictError("Ticket is already cancelled")

        await conn.execute("UPDATE tickets SET status = 'cancelled' WHERE id = $1", ticket_id)
        updated = await conn.fetchrow(f"{TICKET_DETAIL_SELECT} WHERE tk.id = $1", ticket_id)

    logger.info(f"Ticket {ticket_id} cancelled by user {claims.user_id}")
    return to_detail(updated)

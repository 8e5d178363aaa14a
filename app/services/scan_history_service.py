import logging
from typing import List
from app.database import get_db_connection
from app.models.scan import ScanRecordDetail, ScanCheck, ScanStatistics, TopScanner, CheckInResult
from app.models.common import Page
from app.core.exceptions import NotFoundError
from app.services import tickets_service

logger = logging.getLogger(__name__)

SCAN_SELECT = """
    SELECT sh.*, tk.qr_code, su.name AS scanner_name,
           e.id AS event_id, e.name AS event_name, ou.name AS owner_name
    FROM scan_history sh
    JOIN tickets tk ON tk.id = sh.ticket_id
    JOIN transactions t ON t.id = tk.transaction_id
    JOIN ticket_types tt ON tt.id = t.ticket_type_id
    JOIN events e ON e.id = tt.event_id
    JOIN users ou ON ou.id = t.user_id
    LEFT JOIN users su ON su.id = sh.user_id
"""


async def scan_ticket(ticket_id: int, scanner_id: int) -> CheckInResult:
    """Check in by ticket id; same rules as scanning the QR code"""
    async with get_db_connection(use_transaction=False) as conn:
        qr_code = await conn.fetchval("SELECT qr_code FROM tickets WHERE id = $1", ticket_id)
    if qr_code is None:
        raise NotFoundError("Ticket not found")
    return await tickets_service.check_in(qr_code, scanner_id)


async def list_scans(page: int = 1, per_page: int = 20) -> Page:
    async with get_db_connection(use_transaction=False) as conn:
        total = await conn.fetchval("SELECT COUNT(*) FROM scan_history")
        rows = await conn.fetch(f"""
            {SCAN_SELECT}
            ORDER BY sh.scan_time DESC
            LIMIT $1 OFFSET $2
        """, per_page, (page - 1) * per_page)

    total = total or 0
    return Page(
        items=[ScanRecordDetail(**dict(r)) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
        last_page=max(1, -(-total // per_page)),
    )


async def get_statistics() -> ScanStatistics:
    async with get_db_connection(use_transaction=False) as conn:
        counts = await conn.fetchrow("""
            SELECT
                COUNT(*) AS total_scan,
                COUNT(*) FILTER (WHERE scan_time >= date_trunc('day', NOW())) AS scan_today,
                COUNT(*) FILTER (WHERE scan_time >= date_trunc('month', NOW())) AS scan_this_month
            FROM scan_history
        """)
        top = await conn.fetch("""
            SELECT sh.user_id, u.name, COUNT(*) AS total_scan
            FROM scan_history sh
            LEFT JOIN users u ON u.id = sh.user_id
            GROUP BY sh.user_id, u.name
            ORDER BY total_scan DESC
            LIMIT 5
        """)

    return ScanStatistics(
        total_scan=counts['total_scan'] or 0,
        scan_today=counts['scan_today'] or 0,
        scan_this_month=counts['scan_this_month'] or 0,
        top_scanners=[TopScanner(**dict(r)) for r in top],
    )


async def check_ticket(ticket_id: int) -> ScanCheck:
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow(f"{SCAN_SELECT} WHERE sh.ticket_id = $1", ticket_id)
    return ScanCheck(already_scanned=row is not None, scan=ScanRecordDetail(**dict(row)) if row else None)


async def get_by_ticket(ticket_id: int) -> ScanRecordDetail:
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow(f"{SCAN_SELECT} WHERE sh.ticket_id = $1", ticket_id)
    if not row:
        raise NotFoundError("Scan history not found")
    return ScanRecordDetail(**dict(row))


async def get_by_user(user_id: int) -> List[ScanRecordDetail]:
    async with get_db_connection(use_transaction=False) as conn:
        rows = await conn.fetch(f"{SCAN_SELECT} WHERE sh.user_id = $1 ORDER BY sh.scan_time DESC", user_id)
    return [ScanRecordDetail(**dict(r)) for r in rows]


async def get_by_event(event_id: int) -> List[ScanRecordDetail]:
    async with get_db_connection(use_transaction=False) as conn:
        rows = await conn.fetch(f"{SCAN_SELECT} WHERE e.id = $1 ORDER BY sh.scan_time DESC", event_id)
    return [ScanRecordDetail(**dict(r)) for r in rows]


async def delete_scan(scan_id: int, actor_id: int) -> None:
    """
    Remove a scan record as an administrative correction.

    The ticket keeps its used/attended state, so it still cannot be checked
    in again.
    """
    async with get_db_connection() as conn:
        result = await conn.execute("DELETE FROM scan_history WHERE id = $1", scan_id)
        if result == "DELETE 0":
            raise NotFoundError("Scan history not found")

    logger.info(f"Scan record {scan_id} deleted by user {actor_id}")

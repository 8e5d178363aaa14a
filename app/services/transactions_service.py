"""
Transaction lifecycle.

    pending -> paid | failed | expired      (paid path)
    (new)   -> free                          (free path)

Tickets exist only for paid/free transactions and are created in the same
unit of work that flips the status and takes the quota. Confirmation locks
the transaction row, so re-delivered confirmations see a terminal status
and become no-ops.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List
from app.config import settings
from app.database import get_db_connection
from app.models.transaction import (
    Transaction, TransactionDetail, TransactionStatus, TransactionCreate,
    FreeRegistrationRequest, PurchaseResult, FreeRegistrationResult, TransactionStatistics
)
from app.models.ticket import Ticket
from app.models.common import Page
from app.core.exceptions import NotFoundError, ConflictError, AuthorizationError, ValidationError
from app.core.permissions import Role, SubjectClaims
from app.services import ticket_types_service
from app.services.events_service import fetch_event_row, is_finished
from app.services.tickets_service import issue_tickets
from app.services.gateways import get_gateway
from app.services.gateways.base import PaymentData, PaymentItem
from app.utils.qr_generator import generate_order_id

logger = logging.getLogger(__name__)

MAX_FREE_TICKETS = 5

ACTIVE_REGISTRATION_STATUSES = ['pending', 'paid', 'free']
ISSUED_STATUSES = ['paid', 'free']


@dataclass
class ConfirmOutcome:
    transaction: Transaction
    tickets: List[Ticket] = field(default_factory=list)
    changed: bool = True


async def lock_transaction(conn, transaction_id: Optional[int] = None, order_id: Optional[str] = None):
    """Fetch a transaction row FOR UPDATE by id or order id"""
    if order_id is not None:
        row = await conn.fetchrow("SELECT * FROM transactions WHERE order_id = $1 FOR UPDATE", order_id)
    else:
        row = await conn.fetchrow("SELECT * FROM transactions WHERE id = $1 FOR UPDATE", transaction_id)
    if not row:
        raise NotFoundError("Transaction not found")
    return row


def _ensure_open_event(event_row) -> None:
    if is_finished(event_row):
        raise ConflictError("Event has already finished")


async def has_registration(conn, user_id: int, event_id: int, statuses: List[str]) -> bool:
    return bool(await conn.fetchval("""
        SELECT EXISTS (
            SELECT 1 FROM transactions t
            JOIN ticket_types tt ON tt.id = t.ticket_type_id
            WHERE t.user_id = $1 AND tt.event_id = $2 AND t.status = ANY($3::text[])
        )
    """, user_id, event_id, statuses))


async def can_register(user_id: int, event_id: int) -> dict:
    """A user may register for an event while holding no pending, paid or free transaction for it"""
    async with get_db_connection(use_transaction=False) as conn:
        await fetch_event_row(conn, event_id)
        existing = await conn.fetchrow("""
            SELECT t.id, t.order_id, t.status FROM transactions t
            JOIN ticket_types tt ON tt.id = t.ticket_type_id
            WHERE t.user_id = $1 AND tt.event_id = $2 AND t.status = ANY($3::text[])
            ORDER BY t.created_at DESC
            LIMIT 1
        """, user_id, event_id, ACTIVE_REGISTRATION_STATUSES)

    return {
        "event_id": event_id,
        "can_register": existing is None,
        "existing_transaction": dict(existing) if existing else None,
    }


async def register_free(user_id: int, data: FreeRegistrationRequest) -> FreeRegistrationResult:
    """
    Register for a free ticket type.

    Transaction (status free, total 0), ticket batch and quota decrement
    are a single unit of work.
    """
    if data.quantity > MAX_FREE_TICKETS:
        raise ValidationError("Validation error", {"quantity": [f"At most {MAX_FREE_TICKETS} free tickets per registration"]})

    async with get_db_connection() as conn:
        ticket_type = await ticket_types_service.fetch_ticket_type_row(conn, data.ticket_type_id, for_update=True)
        if ticket_type['price'] != 0:
            raise ConflictError("This ticket type is not free; use the paid checkout")

        # One registration per (user, event): concurrent registrations for
        # any ticket type of the event serialize on the event row
        event = await fetch_event_row(conn, ticket_type['event_id'], for_update=True)
        if event['is_paid']:
            raise ConflictError("This event is not free")
        _ensure_open_event(event)

        if await has_registration(conn, user_id, event['id'], ISSUED_STATUSES):
            raise ConflictError("You are already registered for this event")

        if not ticket_types_service.is_available(ticket_type['quota'], data.quantity):
            raise ConflictError("Insufficient ticket quota")

        order_id = generate_order_id(free=True)
        row = await conn.fetchrow("""
            INSERT INTO transactions (user_id, ticket_type_id, quantity, total_price, order_id, status, payment_method, transaction_time)
            VALUES ($1, $2, $3, 0, $4, 'free', 'free', NOW())
            RETURNING *
        """, user_id, data.ticket_type_id, data.quantity, order_id)

        tickets = await issue_tickets(conn, row['id'], order_id, data.quantity)
        await ticket_types_service.decrease_quota(conn, data.ticket_type_id, data.quantity)

    logger.info(f"Free registration {order_id}: user {user_id}, {data.quantity} tickets")
    return FreeRegistrationResult(transaction=Transaction(**dict(row)), tickets=tickets)


async def create_pending_purchase(user_id: int, data: TransactionCreate) -> PurchaseResult:
    """
    Start a paid purchase: a pending transaction plus a Snap payment.

    No quota is taken here; availability is checked again on confirmation.
    A gateway failure aborts the unit so no orphan pending row is left.
    """
    async with get_db_connection() as conn:
        ticket_type = await ticket_types_service.fetch_ticket_type_row(conn, data.ticket_type_id)
        if ticket_type['price'] <= 0:
            raise ConflictError("This ticket type is free; use free registration")

        event = await fetch_event_row(conn, ticket_type['event_id'])
        _ensure_open_event(event)

        if not ticket_types_service.is_available(ticket_type['quota'], data.quantity):
            raise ConflictError("Insufficient ticket quota")

        user = await conn.fetchrow("SELECT id, name, email, phone FROM users WHERE id = $1", user_id)
        if not user:
            raise NotFoundError("User not found")

        total_price = Decimal(ticket_type['price']) * data.quantity
        order_id = generate_order_id()

        row = await conn.fetchrow("""
            INSERT INTO transactions (user_id, ticket_type_id, quantity, total_price, order_id, status)
            VALUES ($1, $2, $3, $4, $5, 'pending')
            RETURNING *
        """, user_id, data.ticket_type_id, data.quantity, total_price, order_id)

        gateway = get_gateway()
        intent = await gateway.create_payment_intent(PaymentData(
            order_id=order_id,
            amount=total_price,
            customer_name=user['name'],
            customer_email=user['email'],
            customer_phone=user['phone'],
            items=[PaymentItem(
                id=str(ticket_type['id']),
                name=f"{event['name']} - {ticket_type['name']}",
                price=Decimal(ticket_type['price']),
                quantity=data.quantity,
            )],
            finish_url=settings.midtrans_finish_url,
        ))

        row = await conn.fetchrow("""
            UPDATE transactions SET snap_token = $1, updated_at = NOW()
            WHERE id = $2
            RETURNING *
        """, intent.token, row['id'])

    logger.info(f"Pending purchase {order_id}: user {user_id}, {data.quantity} x {ticket_type['id']} = {total_price}")
    return PurchaseResult(
        transaction=Transaction(**dict(row)),
        snap_token=intent.token,
        redirect_url=intent.checkout_url,
        client_key=(intent.extra_data or {}).get("client_key"),
    )


async def confirm_payment(conn, transaction_row, payment_method: Optional[str] = None,
                         transaction_time=None) -> ConfirmOutcome:
    """
    pending -> paid on an already locked row: issue tickets, take quota.

    A row that is already paid is returned unchanged, which makes duplicate
    deliveries harmless. Any other status is a conflict.
    """
    status = transaction_row['status']
    if status == TransactionStatus.PAID.value:
        logger.info(f"Transaction {transaction_row['order_id']} already paid, ignoring duplicate confirmation")
        return ConfirmOutcome(transaction=Transaction(**dict(transaction_row)), changed=False)

    if status != TransactionStatus.PENDING.value:
        raise ConflictError(f"Transaction is {status} and cannot be confirmed")

    await ticket_types_service.decrease_quota(conn, transaction_row['ticket_type_id'], transaction_row['quantity'])
    tickets = await issue_tickets(conn, transaction_row['id'], transaction_row['order_id'], transaction_row['quantity'])

    row = await conn.fetchrow("""
        UPDATE transactions
        SET status = 'paid',
            payment_method = COALESCE($2, payment_method),
            transaction_time = COALESCE($3, transaction_time, NOW()),
            updated_at = NOW()
        WHERE id = $1
        RETURNING *
    """, transaction_row['id'], payment_method, transaction_time)

    logger.info(f"Transaction {row['order_id']} confirmed with {len(tickets)} tickets")
    return ConfirmOutcome(transaction=Transaction(**dict(row)), tickets=tickets)


async def fail_locked(conn, transaction_row, target: TransactionStatus = TransactionStatus.FAILED) -> ConfirmOutcome:
    """pending -> failed/expired; repeated delivery of the same target is a no-op"""
    status = transaction_row['status']
    if status == target.value:
        return ConfirmOutcome(transaction=Transaction(**dict(transaction_row)), changed=False)
    if status != TransactionStatus.PENDING.value:
        raise ConflictError(f"Transaction is {status} and cannot be marked {target.value}")

    row = await conn.fetchrow("""
        UPDATE transactions SET status = $2, updated_at = NOW()
        WHERE id = $1
        RETURNING *
    """, transaction_row['id'], target.value)

    logger.info(f"Transaction {row['order_id']} -> {target.value}")
    return ConfirmOutcome(transaction=Transaction(**dict(row)))


async def approve(transaction_id: int, claims: SubjectClaims) -> ConfirmOutcome:
    """Manual confirmation by an administrator; same effects as a settled payment"""
    async with get_db_connection() as conn:
        row = await lock_transaction(conn, transaction_id=transaction_id)
        if row['status'] != TransactionStatus.PENDING.value:
            raise ConflictError(f"Only pending transactions can be approved (current: {row['status']})")
        outcome = await confirm_payment(conn, row, payment_method="manual")

    logger.info(f"Transaction {transaction_id} approved by user {claims.user_id}")
    return outcome


async def reject(transaction_id: int, claims: SubjectClaims) -> Transaction:
    async with get_db_connection() as conn:
        row = await lock_transaction(conn, transaction_id=transaction_id)
        if row['status'] != TransactionStatus.PENDING.value:
            raise ConflictError(f"Only pending transactions can be rejected (current: {row['status']})")
        outcome = await fail_locked(conn, row, TransactionStatus.FAILED)

    logger.info(f"Transaction {transaction_id} rejected by user {claims.user_id}")
    return outcome.transaction


async def cancel(transaction_id: int, claims: SubjectClaims) -> Transaction:
    """Owner (or Admin) abandons a pending purchase; quota was never taken"""
    async with get_db_connection() as conn:
        row = await lock_transaction(conn, transaction_id=transaction_id)
        if row['user_id'] != claims.user_id and not claims.is_admin:
            raise AuthorizationError("You can only cancel your own transactions")
        if row['status'] != TransactionStatus.PENDING.value:
            raise ConflictError(f"Only pending transactions can be cancelled (current: {row['status']})")
        outcome = await fail_locked(conn, row, TransactionStatus.EXPIRED)

    logger.info(f"Transaction {transaction_id} cancelled by user {claims.user_id}")
    return outcome.transaction


_DETAIL_SELECT = """
    SELECT t.*, tt.name AS ticket_type_name, tt.event_id,
           e.name AS event_name, u.name AS user_name, u.email AS user_email
    FROM transactions t
    JOIN ticket_types tt ON tt.id = t.ticket_type_id
    JOIN events e ON e.id = tt.event_id
    JOIN users u ON u.id = t.user_id
"""


async def _load_detail(conn, row) -> TransactionDetail:
    tickets = await conn.fetch(
        "SELECT * FROM tickets WHERE transaction_id = $1 ORDER BY id", row['id']
    )
    return TransactionDetail(**dict(row), tickets=[Ticket(**dict(t)) for t in tickets])


async def _ensure_can_view(conn, row, claims: SubjectClaims) -> None:
    if claims.is_admin or row['user_id'] == claims.user_id:
        return
    if claims.has_role(Role.EO):
        owns = await conn.fetchval(
            "SELECT EXISTS (SELECT 1 FROM event_users WHERE event_id = $1 AND user_id = $2 AND is_owner)",
            row['event_id'], claims.user_id
        )
        if owns:
            return
    raise AuthorizationError("You can only view your own transactions")


async def get_transaction(transaction_id: int, claims: SubjectClaims) -> TransactionDetail:
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow(f"{_DETAIL_SELECT} WHERE t.id = $1", transaction_id)
        if not row:
            raise NotFoundError("Transaction not found")
        await _ensure_can_view(conn, row, claims)
        return await _load_detail(conn, row)


async def get_by_order_id(order_id: str, claims: SubjectClaims) -> TransactionDetail:
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow(f"{_DETAIL_SELECT} WHERE t.order_id = $1", order_id)
        if not row:
            raise NotFoundError("Transaction not found")
        await _ensure_can_view(conn, row, claims)
        return await _load_detail(conn, row)


async def list_transactions(
    claims: SubjectClaims,
    status: Optional[TransactionStatus] = None,
    event_id: Optional[int] = None,
    all_scope: bool = False,
    page: int = 1,
    per_page: int = 15
) -> Page:
    """
    Role-scoped listing.

    all_scope (Admin view) lists everything; an EO sees transactions of the
    events they own; anyone else sees their own.
    """
    where = ["1=1"]
    params = []
    idx = 1

    if not all_scope:
        if claims.is_admin:
            pass
        elif claims.has_role(Role.EO):
            where.append(f"""EXISTS (
                SELECT 1 FROM event_users eu
                WHERE eu.event_id = tt.event_id AND eu.user_id = ${idx} AND eu.is_owner
            )""")
            params.append(claims.user_id)
            idx += 1
        else:
            where.append(f"t.user_id = ${idx}")
            params.append(claims.user_id)
            idx += 1

    if status:
        where.append(f"t.status = ${idx}")
        params.append(status.value)
        idx += 1

    if event_id:
        where.append(f"tt.event_id = ${idx}")
        params.append(event_id)
        idx += 1

    where_sql = " AND ".join(where)

    async with get_db_connection(use_transaction=False) as conn:
        total = await conn.fetchval(f"""
            SELECT COUNT(*) FROM transactions t
            JOIN ticket_types tt ON tt.id = t.ticket_type_id
            WHERE {where_sql}
        """, *params)

        rows = await conn.fetch(f"""
            {_DETAIL_SELECT}
            WHERE {where_sql}
            ORDER BY t.created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """, *params, per_page, (page - 1) * per_page)

    total = total or 0
    return Page(
        items=[TransactionDetail(**dict(r)) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
        last_page=max(1, -(-total // per_page)),
    )


async def get_statistics(claims: SubjectClaims, event_id: Optional[int] = None) -> TransactionStatistics:
    """Counts per status, revenue and tickets sold within the caller's scope"""
    where = ["1=1"]
    params = []
    idx = 1

    if not claims.is_admin:
        if claims.has_role(Role.EO):
            where.append(f"""EXISTS (
                SELECT 1 FROM event_users eu
                WHERE eu.event_id = tt.event_id AND eu.user_id = ${idx} AND eu.is_owner
            )""")
        else:
            where.append(f"t.user_id = ${idx}")
        params.append(claims.user_id)
        idx += 1

    if event_id:
        where.append(f"tt.event_id = ${idx}")
        params.append(event_id)
        idx += 1

    async with get_db_connection(use_transaction=False) as conn:
        rows = await conn.fetch(f"""
            SELECT t.status, COUNT(*) AS count,
                   COALESCE(SUM(t.total_price), 0) AS revenue,
                   COALESCE(SUM(t.quantity), 0) AS tickets
            FROM transactions t
            JOIN ticket_types tt ON tt.id = t.ticket_type_id
            WHERE {' AND '.join(where)}
            GROUP BY t.status
        """, *params)

    by_status = {s.value: 0 for s in TransactionStatus}
    revenue = Decimal("0")
    tickets_sold = 0
    for r in rows:
        by_status[r['status']] = r['count']
        if r['status'] in ISSUED_STATUSES:
            tickets_sold += r['tickets']
        if r['status'] == TransactionStatus.PAID.value:
            revenue += Decimal(r['revenue'])

    return TransactionStatistics(
        total=sum(by_status.values()),
        by_status=by_status,
        revenue=revenue,
        tickets_sold=tickets_sold,
    )


async def delete_transaction(transaction_id: int, claims: SubjectClaims) -> None:
    """Administrative delete; transactions that issued tickets are kept"""
    async with get_db_connection() as conn:
        row = await lock_transaction(conn, transaction_id=transaction_id)
        if row['status'] in ISSUED_STATUSES:
            raise ConflictError("Transactions with issued tickets cannot be deleted")
        await conn.execute("DELETE FROM transactions WHERE id = $1", transaction_id)

    logger.info(f"Transaction {transaction_id} deleted by user {claims.user_id}")

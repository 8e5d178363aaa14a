"""
Payment webhook adapter.

Translates gateway notifications into transaction transitions:

    approved (settlement, accepted capture)  -> confirm (paid + tickets + quota)
    pending  (pending, unaccepted capture)   -> stay pending, record payment metadata
    declined / expired / voided              -> failed, only from pending

Each notification is handled in one unit of work with the transaction row
locked. (order id, target status) is the idempotency key: a notification
whose target the transaction already reached changes nothing.
"""
import logging
from typing import Dict, Any
from app.database import get_db_connection
from app.core.exceptions import AuthenticationError, NotFoundError, AuthorizationError
from app.core.permissions import SubjectClaims
from app.models.payment import WebhookOutcome
from app.models.transaction import TransactionStatus
from app.services.gateways import get_gateway
from app.services.gateways.base import PaymentStatus, WebhookResult
from app.services import transactions_service

logger = logging.getLogger(__name__)

FAILURE_STATUSES = (PaymentStatus.DECLINED, PaymentStatus.EXPIRED, PaymentStatus.VOIDED)


async def apply_payment_result(result: WebhookResult) -> WebhookOutcome:
    """Drive the transaction identified by result.order_id to the reported status"""
    async with get_db_connection() as conn:
        row = await transactions_service.lock_transaction(conn, order_id=result.order_id)
        current = row['status']

        if result.status == PaymentStatus.APPROVED:
            if current != TransactionStatus.PENDING.value and current != TransactionStatus.PAID.value:
                logger.warning(f"Settlement for {result.order_id} arrived in status {current}, ignoring")
                return WebhookOutcome(order_id=result.order_id, action="ignored", status=current)

            outcome = await transactions_service.confirm_payment(
                conn, row,
                payment_method=result.payment_method_type,
                transaction_time=result.transaction_time,
            )
            return WebhookOutcome(
                order_id=result.order_id,
                action="confirmed" if outcome.changed else "ignored",
                status=outcome.transaction.status.value,
                tickets_created=len(outcome.tickets),
            )

        if result.status == PaymentStatus.PENDING:
            if current != TransactionStatus.PENDING.value:
                return WebhookOutcome(order_id=result.order_id, action="ignored", status=current)

            await conn.execute("""
                UPDATE transactions
                SET payment_method = COALESCE($2, payment_method),
                    transaction_time = COALESCE($3, transaction_time),
                    updated_at = NOW()
                WHERE id = $1
            """, row['id'], result.payment_method_type, result.transaction_time)
            return WebhookOutcome(order_id=result.order_id, action="recorded", status=current)

        if result.status in FAILURE_STATUSES:
            if current != TransactionStatus.PENDING.value:
                return WebhookOutcome(order_id=result.order_id, action="ignored", status=current)

            outcome = await transactions_service.fail_locked(conn, row, TransactionStatus.FAILED)
            return WebhookOutcome(order_id=result.order_id, action="failed", status=outcome.transaction.status.value)

    logger.warning(f"Unhandled gateway status {result.gateway_status} for {result.order_id}")
    return WebhookOutcome(order_id=result.order_id, action="ignored", status=current)


async def handle_notification(event_data: Dict[str, Any]) -> WebhookOutcome:
    """
    Entry point for the gateway callback.

    Raises on bad signature or unknown order; any exception rolls the unit
    back and the callback answers non-2xx so the gateway retries.
    """
    gateway = get_gateway()

    if not gateway.verify_webhook(event_data):
        logger.warning(f"Invalid {gateway.display_name} signature for order {event_data.get('order_id')}")
        raise AuthenticationError("Invalid notification signature")

    result = gateway.parse_webhook(event_data)
    logger.info(
        f"{gateway.display_name} notification: order={result.order_id} "
        f"status={result.gateway_status} fraud={result.fraud_status}"
    )

    outcome = await apply_payment_result(result)
    logger.info(f"Notification for {outcome.order_id} -> {outcome.action} ({outcome.status})")
    return outcome


async def _load_for_status(order_id: str, claims: SubjectClaims):
    async with get_db_connection(use_transaction=False) as conn:
        row = await conn.fetchrow("SELECT user_id, status FROM transactions WHERE order_id = $1", order_id)
    if not row:
        raise NotFoundError("Transaction not found")
    if row['user_id'] != claims.user_id and not claims.is_admin:
        raise AuthorizationError("You can only check your own transactions")
    return row


async def get_gateway_status(order_id: str, claims: SubjectClaims) -> dict:
    """What the gateway currently reports for an order; nothing is applied"""
    row = await _load_for_status(order_id, claims)
    result = await get_gateway().get_payment_status(order_id)

    return {
        "order_id": order_id,
        "gateway_status": result.gateway_status,
        "payment_status": result.status.value,
        "fraud_status": result.fraud_status,
        "payment_type": result.payment_method_type,
        "gateway_transaction_id": result.gateway_transaction_id,
        "transaction_time": result.transaction_time,
        "transaction_status": row['status'],
        "gateway_response": result.raw_data,
    }


async def check_status(order_id: str, claims: SubjectClaims) -> dict:
    """
    Ask the gateway for the current status and apply it, for when a
    notification was missed.
    """
    await _load_for_status(order_id, claims)
    result = await get_gateway().get_payment_status(order_id)
    outcome = await apply_payment_result(result)

    return {
        "order_id": order_id,
        "gateway_status": result.gateway_status,
        "payment_type": result.payment_method_type,
        "transaction_status": outcome.status,
        "action": outcome.action,
    }

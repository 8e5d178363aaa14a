"""
Midtrans Router

- `POST /callback`: HTTP notification from Midtrans (no authentication,
  verified by signature). Any error answers non-2xx so Midtrans retries.
- `GET /check-status/{order_id}`: poll Midtrans when a notification was missed
  and apply the answer.
- `GET /status/{order_id}`: what Midtrans reports for an order, without
  touching the transaction.
"""
from fastapi import APIRouter, Depends
from app.core.dependencies import get_authenticated_user, AuthenticatedUser
from app.models.payment import MidtransNotification
from app.models.common import ApiResponse, ok
from app.services import payments_service

router = APIRouter()


@router.post("/callback", response_model=ApiResponse)
async def midtrans_callback(notification: MidtransNotification):
    """
    Webhook endpoint for Midtrans payment notifications.

    Safe to deliver more than once: a notification for a status the
    transaction already reached changes nothing.
    """
    outcome = await payments_service.handle_notification(notification.model_dump())
    return ok(outcome, "Notification processed")


@router.get("/check-status/{order_id}", response_model=ApiResponse)
async def check_status(
    order_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    return ok(await payments_service.check_status(order_id, user.claims))


@router.get("/status/{order_id}", response_model=ApiResponse)
async def gateway_status(
    order_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    """Midtrans' view of the order, read only"""
    return ok(await payments_service.get_gateway_status(order_id, user.claims))

"""
Midtrans Payment Gateway (midtrans.com)

Snap checkout: the API creates a Snap transaction and returns a token plus
redirect URL; Midtrans later posts HTTP notifications carrying the
transaction status.

Documentation: https://docs.midtrans.com/reference/snap-api
"""
import logging
import hashlib
import hmac
import httpx
from typing import Dict, Any, Optional
from datetime import datetime

from app.config import settings
from app.core.exceptions import ExternalServiceError, NotFoundError
from app.services.gateways.base import (
    BaseGateway, PaymentIntent, WebhookResult, PaymentData, PaymentStatus
)

logger = logging.getLogger(__name__)

# Midtrans API URLs
SNAP_SANDBOX_URL = "https://app.sandbox.midtrans.com/snap/v1"
SNAP_PRODUCTION_URL = "https://app.midtrans.com/snap/v1"
CORE_SANDBOX_URL = "https://api.sandbox.midtrans.com/v2"
CORE_PRODUCTION_URL = "https://api.midtrans.com/v2"

TIMEOUT = 30.0


def map_status(transaction_status: str, fraud_status: Optional[str] = None) -> PaymentStatus:
    """
    Map a Midtrans transaction_status to the unified status.

    capture is only final when fraud screening accepted it; a challenged or
    unscreened capture stays pending until Midtrans sends the verdict.
    """
    status = (transaction_status or "").lower()
    fraud = (fraud_status or "").lower()

    if status == "capture":
        return PaymentStatus.APPROVED if fraud == "accept" else PaymentStatus.PENDING
    if status == "settlement":
        return PaymentStatus.APPROVED
    if status == "pending":
        return PaymentStatus.PENDING
    if status == "deny":
        return PaymentStatus.DECLINED
    if status == "expire":
        return PaymentStatus.EXPIRED
    if status == "cancel":
        return PaymentStatus.VOIDED
    if status in ("refund", "partial_refund"):
        return PaymentStatus.REFUNDED
    return PaymentStatus.ERROR


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """sha512(order_id + status_code + gross_amount + server_key), hex encoded"""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode()).hexdigest()


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
    except ValueError:
        logger.debug(f"Unparseable Midtrans transaction_time: {value}")
        return None


class MidtransGateway(BaseGateway):
    """Midtrans Snap gateway implementation"""

    def __init__(self):
        self.server_key = settings.midtrans_server_key
        self.client_key = settings.midtrans_client_key
        self.environment = settings.midtrans_environment

        if self.environment == 'production':
            self.snap_url = SNAP_PRODUCTION_URL
            self.core_url = CORE_PRODUCTION_URL
        else:
            self.snap_url = SNAP_SANDBOX_URL
            self.core_url = CORE_SANDBOX_URL

    @property
    def name(self) -> str:
        return "midtrans"

    @property
    def display_name(self) -> str:
        return "Midtrans"

    def _auth(self) -> httpx.BasicAuth:
        # Server key as username, empty password
        return httpx.BasicAuth(self.server_key or "", "")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def create_payment_intent(self, data: PaymentData) -> PaymentIntent:
        """
        Create a Snap transaction.

        Flow:
        1. POST transaction details to Snap
        2. Snap returns token + redirect_url
        3. Client opens the Snap popup or redirect
        4. Midtrans notifies the callback endpoint when status changes
        """
        if not self.server_key:
            raise ExternalServiceError("Payment gateway is not configured")

        payload: Dict[str, Any] = {
            "transaction_details": {
                "order_id": data.order_id,
                "gross_amount": int(data.amount),
            },
            "customer_details": {
                "first_name": data.customer_name,
                "email": data.customer_email,
            },
        }

        if data.customer_phone:
            payload["customer_details"]["phone"] = data.customer_phone

        if data.items:
            payload["item_details"] = [
                {
                    "id": item.id,
                    "name": item.name[:50],  # Midtrans limit
                    "price": int(item.price),
                    "quantity": item.quantity,
                }
                for item in data.items
            ]

        if data.finish_url:
            payload["callbacks"] = {"finish": data.finish_url}

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.snap_url}/transactions",
                    json=payload,
                    headers=self._get_headers(),
                    auth=self._auth(),
                    timeout=TIMEOUT
                )
        except httpx.HTTPError as e:
            logger.error(f"Midtrans Snap request failed: {e}")
            raise ExternalServiceError("Payment gateway unavailable")

        if response.status_code not in (200, 201):
            logger.error(f"Midtrans Snap error: {response.status_code} - {response.text}")
            raise ExternalServiceError("Failed to create payment with gateway",
                                       details={"gateway_status": response.status_code})

        response_data = response.json()
        token = response_data.get("token")
        if not token:
            logger.error(f"Midtrans response missing token: {response_data}")
            raise ExternalServiceError("Payment gateway returned no token")

        logger.info(f"Created Midtrans Snap transaction for order {data.order_id}")

        return PaymentIntent(
            order_id=data.order_id,
            token=token,
            checkout_url=response_data.get("redirect_url", ""),
            amount=data.amount,
            extra_data={"client_key": self.client_key, "environment": self.environment},
        )

    def verify_webhook(self, event_data: Dict[str, Any]) -> bool:
        """
        Verify signature_key of a notification.

        Verification is skipped (with a warning) when no server key is
        configured, as in local development.
        """
        if not self.server_key:
            logger.warning("Midtrans server key not configured, skipping signature verification")
            return True

        provided = event_data.get("signature_key")
        if not provided:
            logger.warning(f"Midtrans notification without signature for {event_data.get('order_id')}")
            return False

        expected = compute_signature(
            str(event_data.get("order_id", "")),
            str(event_data.get("status_code", "")),
            str(event_data.get("gross_amount", "")),
            self.server_key,
        )
        return hmac.compare_digest(expected, provided)

    def parse_webhook(self, event_data: Dict[str, Any]) -> WebhookResult:
        transaction_status = event_data.get("transaction_status", "")
        fraud_status = event_data.get("fraud_status")

        return WebhookResult(
            order_id=event_data.get("order_id", ""),
            status=map_status(transaction_status, fraud_status),
            gateway_status=transaction_status,
            gateway_transaction_id=event_data.get("transaction_id"),
            payment_method_type=event_data.get("payment_type"),
            transaction_time=_parse_time(event_data.get("transaction_time")),
            fraud_status=fraud_status,
            raw_data=event_data,
        )

    async def get_payment_status(self, order_id: str) -> WebhookResult:
        if not self.server_key:
            raise ExternalServiceError("Payment gateway is not configured")

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.core_url}/{order_id}/status",
                    headers=self._get_headers(),
                    auth=self._auth(),
                    timeout=TIMEOUT
                )
        except httpx.HTTPError as e:
            logger.error(f"Midtrans status request failed: {e}")
            raise ExternalServiceError("Payment gateway unavailable")

        if response.status_code != 200:
            logger.error(f"Midtrans status error: {response.status_code} - {response.text}")
            raise ExternalServiceError("Failed to query payment status")

        data = response.json()
        # Midtrans answers 200 with status_code 404 in the body for unknown orders
        if str(data.get("status_code")) == "404":
            raise NotFoundError("Transaction not found at payment gateway")

        return self.parse_webhook(data)

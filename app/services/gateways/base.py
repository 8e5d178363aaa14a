"""
Base Payment Gateway Interface

All payment gateways must implement this interface so the payment
webhook adapter can drive transactions without knowing the provider.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from decimal import Decimal
from datetime import datetime
from enum import Enum


class PaymentStatus(str, Enum):
    """Unified payment status across all gateways"""
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"
    VOIDED = "voided"
    REFUNDED = "refunded"
    ERROR = "error"


@dataclass
class PaymentIntent:
    """Result of creating a payment with the gateway"""
    order_id: str
    token: str
    checkout_url: str
    amount: Decimal
    extra_data: Optional[Dict[str, Any]] = None


@dataclass
class WebhookResult:
    """Normalised gateway notification"""
    order_id: str
    status: PaymentStatus
    gateway_status: str
    gateway_transaction_id: Optional[str] = None
    payment_method_type: Optional[str] = None
    transaction_time: Optional[datetime] = None
    fraud_status: Optional[str] = None
    raw_data: Optional[Dict[str, Any]] = None


@dataclass
class PaymentItem:
    id: str
    name: str
    price: Decimal
    quantity: int


@dataclass
class PaymentData:
    """Data needed to create a payment"""
    order_id: str
    amount: Decimal
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    items: Optional[List[PaymentItem]] = None
    finish_url: Optional[str] = None


class BaseGateway(ABC):
    """
    Abstract base class for payment gateways.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Gateway identifier (e.g., 'midtrans')"""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable gateway name"""
        pass

    @abstractmethod
    async def create_payment_intent(self, data: PaymentData) -> PaymentIntent:
        """
        Create a payment with the gateway.

        Returns:
            PaymentIntent with the token and checkout URL
        """
        pass

    @abstractmethod
    def verify_webhook(self, event_data: Dict[str, Any]) -> bool:
        """
        Verify the notification signature.

        Returns:
            True if signature is valid
        """
        pass

    @abstractmethod
    def parse_webhook(self, event_data: Dict[str, Any]) -> WebhookResult:
        """Normalise a notification payload"""
        pass

    @abstractmethod
    async def get_payment_status(self, order_id: str) -> WebhookResult:
        """
        Query payment status from the gateway.

        Returns:
            WebhookResult with current payment status
        """
        pass

from pydantic import BaseModel, Field
from typing import Optional


class MidtransNotification(BaseModel):
    """HTTP notification body posted by Midtrans"""
    order_id: str
    transaction_status: str
    status_code: Optional[str] = None
    gross_amount: Optional[str] = None
    signature_key: Optional[str] = None
    fraud_status: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_time: Optional[str] = None
    transaction_id: Optional[str] = None

    class Config:
        extra = "allow"


class WebhookOutcome(BaseModel):
    order_id: str
    action: str = Field(..., description="confirmed, recorded, failed or ignored")
    status: str
    tickets_created: int = 0

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from app.models.ticket import Ticket


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FREE = "free"
    FAILED = "failed"
    EXPIRED = "expired"


class TransactionCreate(BaseModel):
    ticket_type_id: int
    quantity: int = Field(..., ge=1)


class FreeRegistrationRequest(BaseModel):
    ticket_type_id: int
    quantity: int = Field(1, ge=1, le=5)


class Transaction(BaseModel):
    id: int
    user_id: int
    ticket_type_id: int
    quantity: int
    total_price: Decimal
    order_id: str
    status: TransactionStatus
    payment_method: Optional[str] = None
    snap_token: Optional[str] = None
    transaction_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransactionDetail(Transaction):
    ticket_type_name: Optional[str] = None
    event_id: Optional[int] = None
    event_name: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    tickets: List[Ticket] = Field(default_factory=list)


class PurchaseResult(BaseModel):
    transaction: Transaction
    snap_token: Optional[str] = None
    redirect_url: Optional[str] = None
    client_key: Optional[str] = None


class FreeRegistrationResult(BaseModel):
    transaction: Transaction
    tickets: List[Ticket]


class TransactionStatistics(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    revenue: Decimal = Decimal("0")
    tickets_sold: int = 0

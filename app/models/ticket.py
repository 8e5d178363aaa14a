from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum


class TicketStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    CANCELLED = "cancelled"


class Attendance(str, Enum):
    NOT_ATTENDED = "not_attended"
    ATTENDED = "attended"


class Ticket(BaseModel):
    id: int
    transaction_id: int
    qr_code: str
    status: TicketStatus = TicketStatus.ACTIVE
    attendance: Attendance = Attendance.NOT_ATTENDED
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TicketDetail(Ticket):
    """Ticket joined with its transaction, ticket type, event and owner"""
    order_id: Optional[str] = None
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    ticket_type_id: Optional[int] = None
    ticket_type_name: Optional[str] = None
    price: Optional[Decimal] = None
    event_id: Optional[int] = None
    event_name: Optional[str] = None
    event_slug: Optional[str] = None
    venue: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    can_check_in: Optional[bool] = None


class ScanRequest(BaseModel):
    qr_code: str = Field(..., min_length=1, description="Scanned QR payload")


class TicketValidation(BaseModel):
    valid: bool
    message: str
    already_scanned: bool = False
    ticket: Optional[TicketDetail] = None


class TicketStatistics(BaseModel):
    event_id: int
    total: int = 0
    active: int = 0
    used: int = 0
    cancelled: int = 0
    checked_in: int = 0
    not_checked_in: int = 0
    check_in_percentage: float = 0.0


class AttendedTicket(TicketDetail):
    """Checked-in ticket with its scan"""
    scanned_at: Optional[datetime] = None
    scanned_by: Optional[str] = None

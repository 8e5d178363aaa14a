from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from app.models.ticket import TicketDetail
from app.models.user import UserBrief


class ScanRecord(BaseModel):
    id: int
    ticket_id: int
    user_id: int
    scan_time: datetime

    class Config:
        from_attributes = True


class ScanRecordDetail(ScanRecord):
    qr_code: Optional[str] = None
    scanner_name: Optional[str] = None
    event_id: Optional[int] = None
    event_name: Optional[str] = None
    owner_name: Optional[str] = None


class ScanCreate(BaseModel):
    ticket_id: int


class CheckInResult(BaseModel):
    """Outcome of a successful check-in"""
    scan: ScanRecord
    ticket: TicketDetail
    scanner: UserBrief


class ScanCheck(BaseModel):
    already_scanned: bool
    scan: Optional[ScanRecordDetail] = None


class TopScanner(BaseModel):
    user_id: int
    name: Optional[str] = None
    total_scan: int


class ScanStatistics(BaseModel):
    total_scan: int = 0
    scan_today: int = 0
    scan_this_month: int = 0
    top_scanners: List[TopScanner] = Field(default_factory=list)

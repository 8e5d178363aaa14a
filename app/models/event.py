from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum


class EventTimeFilter(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    PAST = "past"


class EventBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Event name")
    description: Optional[str] = None
    venue: Optional[str] = Field(None, max_length=255)
    start_time: datetime
    end_time: datetime
    is_paid: bool = False
    banner: Optional[str] = Field(None, description="Opaque banner reference")


class EventCreate(EventBase):
    @model_validator(mode='after')
    def check_times(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class EventUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    venue: Optional[str] = Field(None, max_length=255)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_paid: Optional[bool] = None
    banner: Optional[str] = None


class Event(EventBase):
    id: int
    slug: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EventSummary(Event):
    """Event row with ownership and price info for listings"""
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    total_quota: Optional[int] = None
    is_owner: Optional[bool] = None


class EventMember(BaseModel):
    user_id: int
    name: str
    email: str
    is_owner: bool = False
    created_at: Optional[datetime] = None


class PanitiaRequest(BaseModel):
    user_id: int


class TransferOwnershipRequest(BaseModel):
    new_owner_id: int
    keep_as_panitia: bool = Field(True, description="Keep the previous owner as committee member")

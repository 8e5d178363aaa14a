from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal


class TicketTypeCreate(BaseModel):
    event_id: int
    name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(Decimal("0"), ge=0, description="0 marks a free ticket type")
    quota: int = Field(..., ge=0)


class TicketTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    price: Optional[Decimal] = Field(None, ge=0)
    quota: Optional[int] = Field(None, ge=0)


class TicketType(BaseModel):
    id: int
    event_id: int
    name: str
    price: Decimal
    quota: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_free(self) -> bool:
        return self.price == 0


class TicketTypeAvailability(BaseModel):
    ticket_type_id: int
    quota: int
    requested: int
    is_available: bool
    can_be_purchased: bool
    availability: str

from fastapi import APIRouter, Depends, Query
from typing import Optional
from app.core.dependencies import require_permission, AuthenticatedUser
from app.core.permissions import Capability
from app.models.ticket_type import TicketTypeCreate, TicketTypeUpdate
from app.models.common import ApiResponse, ok
from app.services import ticket_types_service

router = APIRouter()


@router.get("", response_model=ApiResponse)
async def list_ticket_types(event_id: Optional[int] = Query(None)):
    return ok(await ticket_types_service.list_ticket_types(event_id))


@router.get("/event/{event_id}", response_model=ApiResponse)
async def list_by_event(event_id: int):
    return ok(await ticket_types_service.list_ticket_types(event_id))


@router.post("", response_model=ApiResponse, status_code=201)
async def create_ticket_type(
    data: TicketTypeCreate,
    user: AuthenticatedUser = Depends(require_permission(Capability.JENIS_TIKET_CREATE))
):
    """Create a ticket type. Price 0 makes it a free ticket type."""
    ticket_type = await ticket_types_service.create_ticket_type(data, user.claims)
    return ok(ticket_type, "Ticket type created successfully")


@router.get("/{ticket_type_id}", response_model=ApiResponse)
async def get_ticket_type(ticket_type_id: int):
    return ok(await ticket_types_service.get_ticket_type(ticket_type_id))


@router.get("/{ticket_type_id}/available", response_model=ApiResponse)
async def check_availability(
    ticket_type_id: int,
    quantity: int = Query(1, ge=1)
):
    return ok(await ticket_types_service.check_availability(ticket_type_id, quantity))


@router.put("/{ticket_type_id}", response_model=ApiResponse)
async def update_ticket_type(
    ticket_type_id: int,
    data: TicketTypeUpdate,
    user: AuthenticatedUser = Depends(require_permission(Capability.JENIS_TIKET_UPDATE))
):
    ticket_type = await ticket_types_service.update_ticket_type(ticket_type_id, data, user.claims)
    return ok(ticket_type, "Ticket type updated successfully")


@router.delete("/{ticket_type_id}", response_model=ApiResponse)
async def delete_ticket_type(
    ticket_type_id: int,
    user: AuthenticatedUser = Depends(require_permission(Capability.JENIS_TIKET_DELETE))
):
    await ticket_types_service.delete_ticket_type(ticket_type_id, user.claims)
    return ok(message="Ticket type deleted successfully")

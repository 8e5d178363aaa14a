from fastapi import APIRouter, Depends, Query
from typing import Optional
from app.core.dependencies import (
    get_authenticated_user, get_optional_user, require_permission, AuthenticatedUser
)
from app.core.permissions import Capability
from app.models.event import (
    EventCreate, EventUpdate, EventTimeFilter, PanitiaRequest, TransferOwnershipRequest
)
from app.models.common import ApiResponse, ok
from app.services import events_service

router = APIRouter()


@router.get("/public", response_model=ApiResponse)
async def list_public_events():
    """Upcoming events with their ticket types. No authentication required."""
    return ok(await events_service.list_public_events())


@router.get("/my-managed", response_model=ApiResponse)
async def my_managed_events(user: AuthenticatedUser = Depends(get_authenticated_user)):
    """Events where the current user is owner or committee (panitia)"""
    return ok(await events_service.get_managed_events(user.user_id))


@router.get("", response_model=ApiResponse)
async def list_events(
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    filter: Optional[EventTimeFilter] = Query(None, description="upcoming, ongoing or past"),
    is_paid: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100)
):
    """
    List events.

    An EO without the Admin role only sees the events they own.
    """
    events = await events_service.list_events(
        claims=user.claims if user else None,
        time_filter=filter,
        is_paid=is_paid,
        search=search,
        page=page,
        per_page=per_page,
    )
    return ok(events)


@router.post("", response_model=ApiResponse, status_code=201)
async def create_event(
    data: EventCreate,
    user: AuthenticatedUser = Depends(require_permission(Capability.EVENT_CREATE))
):
    """Create an event; the creator becomes its owner"""
    event = await events_service.create_event(data, user.claims)
    return ok(event, "Event created successfully")


@router.get("/{slug_or_id}", response_model=ApiResponse)
async def get_event(slug_or_id: str):
    return ok(await events_service.get_event(slug_or_id))


@router.get("/{event_id}/jenis-tiket", response_model=ApiResponse)
async def get_event_ticket_types(event_id: int):
    return ok(await events_service.get_ticket_types(event_id))


@router.put("/{event_id}", response_model=ApiResponse)
@router.patch("/{event_id}", response_model=ApiResponse)
async def update_event(
    event_id: int,
    data: EventUpdate,
    user: AuthenticatedUser = Depends(require_permission(Capability.EVENT_UPDATE))
):
    """Partial update. Renaming regenerates the slug."""
    event = await events_service.update_event(event_id, data, user.claims)
    return ok(event, "Event updated successfully")


@router.delete("/{event_id}", response_model=ApiResponse)
async def delete_event(
    event_id: int,
    user: AuthenticatedUser = Depends(require_permission(Capability.EVENT_DELETE))
):
    await events_service.delete_event(event_id, user.claims)
    return ok(message="Event deleted successfully")


@router.get("/{event_id}/panitia", response_model=ApiResponse)
async def list_panitia(
    event_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    return ok(await events_service.list_members(event_id, user.claims))


@router.post("/{event_id}/add-panitia", response_model=ApiResponse)
async def add_panitia(
    event_id: int,
    data: PanitiaRequest,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    member = await events_service.add_panitia(event_id, data.user_id, user.claims)
    return ok(member, "Panitia added successfully")


@router.post("/{event_id}/remove-panitia", response_model=ApiResponse)
async def remove_panitia(
    event_id: int,
    data: PanitiaRequest,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    await events_service.remove_panitia(event_id, data.user_id, user.claims)
    return ok(message="Panitia removed successfully")


@router.post("/{event_id}/transfer-ownership", response_model=ApiResponse)
async def transfer_ownership(
    event_id: int,
    data: TransferOwnershipRequest,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    """
    Hand the event to another EO or Admin.

    By default the previous owner stays on as panitia.
    """
    result = await events_service.transfer_ownership(
        event_id, data.new_owner_id, user.claims, keep_as_panitia=data.keep_as_panitia
    )
    return ok(result, "Ownership transferred successfully")

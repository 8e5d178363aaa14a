from fastapi import APIRouter, Depends, Query
from app.core.dependencies import require_permission, require_roles, AuthenticatedUser
from app.core.permissions import Capability, Role
from app.models.scan import ScanCreate
from app.models.common import ApiResponse, ok
from app.services import scan_history_service

router = APIRouter()

_can_view = require_permission(Capability.PENGECEKAN_VIEW, Capability.TIKET_SCAN)


@router.get("", response_model=ApiResponse)
async def list_scans(
    user: AuthenticatedUser = Depends(_can_view),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100)
):
    return ok(await scan_history_service.list_scans(page, per_page))


@router.post("", response_model=ApiResponse, status_code=201)
async def create_scan(
    data: ScanCreate,
    user: AuthenticatedUser = Depends(require_permission(Capability.PENGECEKAN_CREATE, Capability.TIKET_SCAN))
):
    """Check a ticket in by its id instead of its QR code"""
    result = await scan_history_service.scan_ticket(data.ticket_id, user.user_id)
    return ok(result, "Check-in successful")


@router.get("/statistics", response_model=ApiResponse)
async def scan_statistics(user: AuthenticatedUser = Depends(_can_view)):
    return ok(await scan_history_service.get_statistics())


@router.get("/check/{ticket_id}", response_model=ApiResponse)
async def check_ticket(ticket_id: int, user: AuthenticatedUser = Depends(_can_view)):
    return ok(await scan_history_service.check_ticket(ticket_id))


@router.get("/tiket/{ticket_id}", response_model=ApiResponse)
async def scan_by_ticket(ticket_id: int, user: AuthenticatedUser = Depends(_can_view)):
    return ok(await scan_history_service.get_by_ticket(ticket_id))


@router.get("/user/{user_id}", response_model=ApiResponse)
async def scans_by_user(user_id: int, user: AuthenticatedUser = Depends(_can_view)):
    return ok(await scan_history_service.get_by_user(user_id))


@router.get("/event/{event_id}", response_model=ApiResponse)
async def scans_by_event(event_id: int, user: AuthenticatedUser = Depends(_can_view)):
    return ok(await scan_history_service.get_by_event(event_id))


@router.delete("/{scan_id}", response_model=ApiResponse)
async def delete_scan(
    scan_id: int,
    user: AuthenticatedUser = Depends(require_roles(Role.ADMIN))
):
    await scan_history_service.delete_scan(scan_id, user.user_id)
    return ok(message="Scan history deleted successfully")

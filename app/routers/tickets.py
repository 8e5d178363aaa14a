from fastapi import APIRouter, Depends, Query, Response
from typing import Optional
from app.core.dependencies import get_authenticated_user, require_permission, AuthenticatedUser
from app.core.permissions import Capability
from app.models.ticket import ScanRequest, TicketStatus, Attendance
from app.models.common import ApiResponse, ok
from app.services import tickets_service
from app.utils.qr_generator import generate_qr_image

router = APIRouter()


@router.post("/scan", response_model=ApiResponse)
@router.post("/check-in", response_model=ApiResponse)
async def scan_ticket(
    data: ScanRequest,
    user: AuthenticatedUser = Depends(require_permission(Capability.TIKET_SCAN))
):
    """
    Check a ticket in at the gate.

    A second scan of the same ticket answers 409 with the original scan
    record and scanner in `data`.
    """
    result = await tickets_service.check_in(data.qr_code, user.user_id)
    return ok(result, "Check-in successful")


@router.get("/qr/{code}", response_model=ApiResponse)
async def get_by_qr(
    code: str,
    user: AuthenticatedUser = Depends(require_permission(Capability.TIKET_VERIFY, Capability.TIKET_SCAN))
):
    return ok(await tickets_service.get_by_qr(code))


@router.get("/verify/{code}", response_model=ApiResponse)
async def verify_ticket(
    code: str,
    user: AuthenticatedUser = Depends(require_permission(Capability.TIKET_VERIFY, Capability.TIKET_SCAN))
):
    validation = await tickets_service.validate(code)
    return ok(validation, validation.message)


@router.post("/validate", response_model=ApiResponse)
async def validate_ticket(
    data: ScanRequest,
    user: AuthenticatedUser = Depends(require_permission(Capability.TIKET_VERIFY, Capability.TIKET_SCAN))
):
    """Report whether a check-in would succeed, without performing it"""
    validation = await tickets_service.validate(data.qr_code)
    return ok(validation, validation.message)


@router.get("/scan-history", response_model=ApiResponse)
async def attended_tickets(
    user: AuthenticatedUser = Depends(require_permission(Capability.TIKET_SCAN, Capability.PENGECEKAN_VIEW)),
    event_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100)
):
    tickets = await tickets_service.get_attended_tickets(
        user.claims, event_id=event_id, page=page, per_page=per_page
    )
    return ok(tickets, "Scan history retrieved successfully")


@router.get("/my-tickets", response_model=ApiResponse)
async def my_tickets(
    user: AuthenticatedUser = Depends(get_authenticated_user),
    status: Optional[TicketStatus] = Query(None),
    upcoming: bool = Query(False),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100)
):
    tickets = await tickets_service.get_my_tickets(
        user.user_id, status=status, upcoming=upcoming, page=page, per_page=per_page
    )
    return ok(tickets)


@router.get("/event/{event_id}", response_model=ApiResponse)
async def event_tickets(
    event_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    status: Optional[TicketStatus] = Query(None),
    attendance: Optional[Attendance] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100)
):
    tickets = await tickets_service.get_event_tickets(
        event_id, user.claims, status=status, attendance=attendance, page=page, per_page=per_page
    )
    return ok(tickets)


@router.get("/event/{event_id}/statistics", response_model=ApiResponse)
async def event_ticket_statistics(
    event_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    return ok(await tickets_service.get_event_statistics(event_id, user.claims))


@router.get("/{ticket_id}", response_model=ApiResponse)
async def get_ticket(
    ticket_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    return ok(await tickets_service.get_ticket(ticket_id, user.claims))


@router.get("/{ticket_id}/qr-image")
async def get_ticket_qr_image(
    ticket_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    """QR code of the ticket as a PNG image"""
    code = await tickets_service.get_ticket_code(ticket_id, user.claims)

    return Response(
        content=generate_qr_image(code),
        media_type="image/png",
        headers={
            "Content-Disposition": f"inline; filename=ticket-{ticket_id}.png",
            "X-Ticket-Code": code
        }
    )


@router.post("/{ticket_id}/cancel", response_model=ApiResponse)
async def cancel_ticket(
    ticket_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    ticket = await tickets_service.cancel_ticket(ticket_id, user.claims)
    return ok(ticket, "Ticket cancelled successfully")

from fastapi import APIRouter, Depends, Query
from typing import Optional
from app.core.dependencies import (
    get_authenticated_user, require_permission, require_roles, AuthenticatedUser
)
from app.core.permissions import Capability, Role
from app.models.transaction import TransactionCreate, FreeRegistrationRequest, TransactionStatus
from app.models.common import ApiResponse, ok
from app.services import transactions_service

router = APIRouter()


@router.post("/register-free", response_model=ApiResponse, status_code=201)
async def register_free(
    data: FreeRegistrationRequest,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    """
    Register for a free ticket type.

    Tickets are issued immediately. One registration per user and event.
    """
    result = await transactions_service.register_free(user.user_id, data)
    return ok(result, "Registration successful")


@router.get("/can-register/{event_id}", response_model=ApiResponse)
async def can_register(
    event_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    return ok(await transactions_service.can_register(user.user_id, event_id))


@router.post("", response_model=ApiResponse, status_code=201)
async def create_transaction(
    data: TransactionCreate,
    user: AuthenticatedUser = Depends(require_permission(Capability.TRANSAKSI_CREATE))
):
    """
    Start a paid purchase.

    Returns the pending transaction together with the Snap token and
    redirect URL the client uses to pay.
    """
    result = await transactions_service.create_pending_purchase(user.user_id, data)
    return ok(result, "Transaction created successfully")


@router.get("", response_model=ApiResponse)
async def list_transactions(
    user: AuthenticatedUser = Depends(get_authenticated_user),
    status: Optional[TransactionStatus] = Query(None),
    event_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100)
):
    """Transactions visible to the caller (own, or owned events for an EO)"""
    transactions = await transactions_service.list_transactions(
        user.claims, status=status, event_id=event_id, page=page, per_page=per_page
    )
    return ok(transactions)


@router.get("/all", response_model=ApiResponse)
async def list_all_transactions(
    user: AuthenticatedUser = Depends(require_permission(Capability.TRANSAKSI_VIEW_ALL, Capability.TRANSAKSI_APPROVE)),
    status: Optional[TransactionStatus] = Query(None),
    event_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100)
):
    transactions = await transactions_service.list_transactions(
        user.claims, status=status, event_id=event_id, all_scope=True, page=page, per_page=per_page
    )
    return ok(transactions)


@router.get("/statistics", response_model=ApiResponse)
async def transaction_statistics(
    user: AuthenticatedUser = Depends(get_authenticated_user),
    event_id: Optional[int] = Query(None)
):
    return ok(await transactions_service.get_statistics(user.claims, event_id))


@router.get("/order/{order_id}", response_model=ApiResponse)
async def get_by_order_id(
    order_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    return ok(await transactions_service.get_by_order_id(order_id, user.claims))


@router.get("/{transaction_id}", response_model=ApiResponse)
async def get_transaction(
    transaction_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    return ok(await transactions_service.get_transaction(transaction_id, user.claims))


@router.post("/{transaction_id}/cancel", response_model=ApiResponse)
async def cancel_transaction(
    transaction_id: int,
    user: AuthenticatedUser = Depends(get_authenticated_user)
):
    transaction = await transactions_service.cancel(transaction_id, user.claims)
    return ok(transaction, "Transaction cancelled")


@router.post("/{transaction_id}/approve", response_model=ApiResponse)
async def approve_transaction(
    transaction_id: int,
    user: AuthenticatedUser = Depends(require_permission(Capability.TRANSAKSI_APPROVE))
):
    """Manually mark a pending transaction as paid and issue its tickets"""
    outcome = await transactions_service.approve(transaction_id, user.claims)
    return ok(
        {"transaction": outcome.transaction, "tickets": outcome.tickets},
        "Transaction approved"
    )


@router.post("/{transaction_id}/reject", response_model=ApiResponse)
async def reject_transaction(
    transaction_id: int,
    user: AuthenticatedUser = Depends(require_permission(Capability.TRANSAKSI_REJECT, Capability.TRANSAKSI_APPROVE))
):
    transaction = await transactions_service.reject(transaction_id, user.claims)
    return ok(transaction, "Transaction rejected")


@router.delete("/{transaction_id}", response_model=ApiResponse)
async def delete_transaction(
    transaction_id: int,
    user: AuthenticatedUser = Depends(require_roles(Role.ADMIN))
):
    await transactions_service.delete_transaction(transaction_id, user.claims)
    return ok(message="Transaction deleted successfully")

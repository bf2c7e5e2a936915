"""Fees router: parent fee view, payment recording and invoice cancellation."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_admin, require_parent
from app.auth.schemas import CurrentUser
from app.core.cache import CacheService, get_cache
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import InvoiceCancel, InvoiceResponse, ParentFees, PaymentCreate

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


@router.get("/parent", response_model=ParentFees, dependencies=[Depends(require_parent)])
async def get_parent_fees(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Invoices of all linked children with summary and per-child breakdown."""
    try:
        return await service.get_parent_fees(db, cache, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/invoices/{invoice_id}/payment",
    response_model=InvoiceResponse,
    dependencies=[Depends(require_admin)],
)
async def record_payment(
    invoice_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.record_payment(db, cache, current_user, invoice_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/invoices/{invoice_id}/cancel",
    response_model=InvoiceResponse,
    dependencies=[Depends(require_admin)],
)
async def cancel_invoice(
    invoice_id: UUID,
    payload: InvoiceCancel,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.cancel_invoice(db, cache, current_user, invoice_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

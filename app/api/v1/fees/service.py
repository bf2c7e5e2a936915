"""Fee views and invoice state changes. Payments are recorded, never processed."""

from typing import List
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.profiles import get_child_ids, get_parent_ids, get_parent_profile
from app.auth.schemas import CurrentUser
from app.core.aggregates.common import utc_today
from app.core.aggregates.fees import breakdown_by_child, invoice_status, summarize_invoices
from app.core.cache import CacheService
from app.core.cache.invalidation import AffectedEntities, Mutation, invalidate
from app.core.cache.keys import ViewKind
from app.core.cache.readthrough import cached_view
from app.core.enums import InvoiceStatus
from app.core.exceptions import ServiceError, not_found
from app.core.logging import get_logger
from app.core.models import FeeInvoice, FeeStructure
from app.core.services import get_students

from .schemas import InvoiceCancel, InvoiceItem, InvoiceResponse, ParentFees, PaymentCreate

log = get_logger("fees")


async def get_student_invoices(db: AsyncSession, tenant_id: UUID, student_ids: List[UUID]) -> List[FeeInvoice]:
    if not student_ids:
        return []
    stmt = (
        select(FeeInvoice)
        .where(FeeInvoice.tenant_id == tenant_id, FeeInvoice.student_id.in_(student_ids))
        .order_by(FeeInvoice.due_date.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def _compute_parent_fees(db: AsyncSession, tenant_id: UUID, parent_id: UUID) -> ParentFees:
    today = utc_today()
    children = await get_students(db, tenant_id, await get_child_ids(db, parent_id))
    invoices = await get_student_invoices(db, tenant_id, [c.id for c in children])

    fee_names = {}
    if invoices:
        stmt = select(FeeStructure.id, FeeStructure.name).where(
            FeeStructure.id.in_({i.fee_structure_id for i in invoices})
        )
        fee_names = dict((await db.execute(stmt)).all())
    names = {c.id: c.full_name for c in children}

    return ParentFees(
        invoices=[
            InvoiceItem(
                id=i.id,
                student_id=i.student_id,
                student_name=names.get(i.student_id, ""),
                fee_name=fee_names.get(i.fee_structure_id, ""),
                amount=i.amount,
                due_date=i.due_date,
                status=invoice_status(i, today),
                paid_date=i.paid_date,
                payment_method=i.payment_method,
                transaction_id=i.transaction_id,
            )
            for i in invoices
        ],
        summary=summarize_invoices(invoices, today),
        by_child=breakdown_by_child(names, invoices, today),
    )


async def get_parent_fees(db: AsyncSession, cache: CacheService, user: CurrentUser) -> ParentFees:
    parent = await get_parent_profile(db, user)
    return await cached_view(
        cache,
        user.tenant_id,
        ViewKind.PARENT_FEES,
        parent.id,
        ParentFees,
        lambda: _compute_parent_fees(db, user.tenant_id, parent.id),
        {"parent": parent.id},
    )


def _to_response(invoice: FeeInvoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=invoice.id,
        student_id=invoice.student_id,
        amount=invoice.amount,
        due_date=invoice.due_date,
        status=invoice_status(invoice, utc_today()),
        paid_date=invoice.paid_date,
        payment_method=invoice.payment_method,
        transaction_id=invoice.transaction_id,
        remarks=invoice.remarks,
    )


async def _get_invoice(db: AsyncSession, tenant_id: UUID, invoice_id: UUID) -> FeeInvoice:
    stmt = select(FeeInvoice).where(FeeInvoice.id == invoice_id, FeeInvoice.tenant_id == tenant_id)
    invoice = (await db.execute(stmt)).scalar_one_or_none()
    if invoice is None:
        raise not_found("Invoice")
    return invoice


async def _invalidate_invoice(cache: CacheService, db: AsyncSession, mutation: Mutation, invoice: FeeInvoice) -> None:
    await invalidate(
        cache,
        mutation,
        AffectedEntities.of(
            students=[invoice.student_id],
            parents=await get_parent_ids(db, [invoice.student_id]),
            schools=[invoice.tenant_id],
        ),
    )


async def record_payment(
    db: AsyncSession,
    cache: CacheService,
    user: CurrentUser,
    invoice_id: UUID,
    payload: PaymentCreate,
) -> InvoiceResponse:
    invoice = await _get_invoice(db, user.tenant_id, invoice_id)
    current = invoice_status(invoice, utc_today())
    if current is InvoiceStatus.CANCELLED:
        raise ServiceError("Cannot record payment for a cancelled invoice", status.HTTP_409_CONFLICT)
    if current is InvoiceStatus.PAID:
        raise ServiceError("Invoice is already paid", status.HTTP_409_CONFLICT)

    invoice.status = InvoiceStatus.PAID.value
    invoice.paid_date = payload.paid_date or utc_today()
    invoice.payment_method = payload.payment_method.strip().upper()
    invoice.transaction_id = (payload.transaction_id or "").strip() or None
    if payload.remarks:
        invoice.remarks = payload.remarks
    await db.commit()
    log.info("Payment recorded for invoice %s", invoice.id)

    await _invalidate_invoice(cache, db, Mutation.PAYMENT_RECORDED, invoice)
    return _to_response(invoice)


async def cancel_invoice(
    db: AsyncSession,
    cache: CacheService,
    user: CurrentUser,
    invoice_id: UUID,
    payload: InvoiceCancel,
) -> InvoiceResponse:
    invoice = await _get_invoice(db, user.tenant_id, invoice_id)
    current = invoice_status(invoice, utc_today())
    if current is InvoiceStatus.PAID:
        raise ServiceError("Cannot cancel a paid invoice", status.HTTP_409_CONFLICT)
    if current is InvoiceStatus.CANCELLED:
        return _to_response(invoice)

    invoice.status = InvoiceStatus.CANCELLED.value
    if payload.remarks:
        invoice.remarks = payload.remarks
    await db.commit()

    await _invalidate_invoice(cache, db, Mutation.INVOICE_CANCELLED, invoice)
    return _to_response(invoice)

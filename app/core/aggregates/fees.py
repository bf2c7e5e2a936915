"""Invoice aggregation.

effective_invoice_status is the single definition of OVERDUE. Nothing else in the
code base compares FeeInvoice.status against OVERDUE or due dates directly.
"""
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.aggregates.common import enum_value
from app.core.enums import InvoiceStatus

OUTSTANDING_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)


class InvoiceBucket(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0")


class InvoiceSummary(BaseModel):
    pending: InvoiceBucket = Field(default_factory=InvoiceBucket)
    paid: InvoiceBucket = Field(default_factory=InvoiceBucket)
    overdue: InvoiceBucket = Field(default_factory=InvoiceBucket)
    cancelled: InvoiceBucket = Field(default_factory=InvoiceBucket)
    total_outstanding: Decimal = Decimal("0")


class ChildFees(BaseModel):
    student_id: UUID
    student_name: str
    pending: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")
    overdue: Decimal = Decimal("0")


def _amount(invoice: Any) -> Decimal:
    return Decimal(str(invoice.amount))


def effective_invoice_status(stored_status: Any, due_date: Optional[date], today: date) -> InvoiceStatus:
    status = InvoiceStatus(enum_value(stored_status))
    if status is InvoiceStatus.PENDING and due_date is not None and due_date < today:
        return InvoiceStatus.OVERDUE
    return status


def invoice_status(invoice: Any, today: date) -> InvoiceStatus:
    return effective_invoice_status(invoice.status, invoice.due_date, today)


def is_outstanding(invoice: Any, today: date) -> bool:
    return invoice_status(invoice, today) in OUTSTANDING_STATUSES


def summarize_invoices(invoices: Iterable[Any], today: date) -> InvoiceSummary:
    summary = InvoiceSummary()
    for invoice in invoices:
        status = invoice_status(invoice, today)
        bucket = getattr(summary, status.value.lower())
        bucket.count += 1
        bucket.amount += _amount(invoice)
    summary.total_outstanding = summary.pending.amount + summary.overdue.amount
    return summary


def outstanding_by_student(invoices: Iterable[Any], today: date) -> Dict[UUID, Decimal]:
    totals: Dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
    for invoice in invoices:
        if is_outstanding(invoice, today):
            totals[invoice.student_id] += _amount(invoice)
    return dict(totals)


def breakdown_by_child(
    children: Mapping[UUID, str],
    invoices: Iterable[Any],
    today: date,
) -> List[ChildFees]:
    """children maps student id to name, in display order. Children without invoices get zero rows."""
    rows = {sid: ChildFees(student_id=sid, student_name=name) for sid, name in children.items()}
    for invoice in invoices:
        row = rows.get(invoice.student_id)
        if row is None:
            continue
        status = invoice_status(invoice, today)
        if status is InvoiceStatus.CANCELLED:
            continue
        field = status.value.lower()
        setattr(row, field, getattr(row, field) + _amount(invoice))
    return list(rows.values())

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.aggregates.fees import ChildFees, InvoiceSummary
from app.core.enums import InvoiceStatus


class InvoiceItem(BaseModel):
    """An invoice as readers see it: status is the effective (read-time) status."""

    id: UUID
    student_id: UUID
    student_name: str
    fee_name: str
    amount: Decimal
    due_date: date
    status: InvoiceStatus
    paid_date: Optional[date] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None


class ParentFees(BaseModel):
    invoices: List[InvoiceItem]
    summary: InvoiceSummary
    by_child: List[ChildFees]


class PaymentCreate(BaseModel):
    payment_method: str = Field(..., description="UPI, CARD, CASH, BANK")
    transaction_id: Optional[str] = Field(None, max_length=100)
    paid_date: Optional[date] = None  # defaults to today
    remarks: Optional[str] = Field(None, max_length=500)


class InvoiceCancel(BaseModel):
    remarks: Optional[str] = Field(None, max_length=500)


class InvoiceResponse(BaseModel):
    id: UUID
    student_id: UUID
    amount: Decimal
    due_date: date
    status: InvoiceStatus
    paid_date: Optional[date] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    remarks: Optional[str] = None

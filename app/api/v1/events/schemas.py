from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.core.aggregates.dashboard import ApprovalCounts
from app.core.enums import AUDIENCE_ALL, ApprovalStatus, EventType


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: EventType
    location: Optional[str] = Field(None, max_length=255)
    start_date: datetime
    end_date: Optional[datetime] = None
    deadline: datetime
    # Class names, or ["All"] for every enrolled student.
    target_audience: List[str] = Field(default_factory=lambda: [AUDIENCE_ALL])
    requires_approval: bool = False
    capacity: Optional[int] = Field(None, ge=1)
    fee: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def validate_dates(self) -> "EventCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class EventUpdate(BaseModel):
    """Partial update. Changing target_audience does not add or remove approvals."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[EventType] = None
    location: Optional[str] = Field(None, max_length=255)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    deadline: Optional[datetime] = None
    target_audience: Optional[List[str]] = None
    requires_approval: Optional[bool] = None
    capacity: Optional[int] = Field(None, ge=1)
    fee: Optional[Decimal] = Field(None, ge=0)


class EventResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    type: str
    location: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    deadline: datetime
    target_audience: List[str]
    requires_approval: bool
    capacity: Optional[int] = None
    fee: Optional[Decimal] = None
    created_at: datetime

    class Config:
        from_attributes = True


class FanOutResult(BaseModel):
    """Outcome of one fan-out run. skipped counts pairs that already had an approval."""

    targeted_students: int = 0
    created: int = 0
    skipped: int = 0


class EventCreateResult(BaseModel):
    event: EventResponse
    fan_out: Optional[FanOutResult] = None


class ApprovalRespond(BaseModel):
    status: ApprovalStatus
    remarks: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_status(self) -> "ApprovalRespond":
        if self.status == ApprovalStatus.PENDING:
            raise ValueError("status must be APPROVED or DECLINED")
        return self


class ApprovalItem(BaseModel):
    id: UUID
    event_id: UUID
    student_id: UUID
    student_name: str
    status: str
    remarks: Optional[str] = None
    responded_at: Optional[datetime] = None


class BulkRespondResult(BaseModel):
    event_id: UUID
    updated: int


class ParentEventEntry(BaseModel):
    event: EventResponse
    approvals: List[ApprovalItem]
    is_expired: bool
    counts: ApprovalCounts


class ParentEventsView(BaseModel):
    """Events a parent has approvals for.

    pending: still awaiting a response before the deadline, soonest deadline first.
    upcoming: not started, nothing left to answer. past: already started, newest first, at most 10.
    """

    pending: List[ParentEventEntry]
    upcoming: List[ParentEventEntry]
    past: List[ParentEventEntry]
    totals: ApprovalCounts


class AdminEventEntry(BaseModel):
    event: EventResponse
    stats: ApprovalCounts


class AdminEventsView(BaseModel):
    events: List[AdminEventEntry]
    total: int
    upcoming: int
    past: int
    pending_approvals: int

"""Schemas shared by several feature views."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class StudentInfo(BaseModel):
    """A student with their current placement. Section/class are None for unplaced students."""

    id: UUID
    user_id: UUID
    full_name: str
    roll_number: Optional[str] = None
    section_id: Optional[UUID] = None
    section_name: Optional[str] = None
    class_id: Optional[UUID] = None
    class_name: Optional[str] = None

    @property
    def first_name(self) -> str:
        return self.full_name.split(" ", 1)[0]


class SectionInfo(BaseModel):
    id: UUID
    name: str
    class_id: UUID
    class_name: str

    @property
    def label(self) -> str:
        return f"{self.class_name} - {self.name}"


class SubjectInfo(BaseModel):
    id: UUID
    name: str
    code: Optional[str] = None
    color: Optional[str] = None

    class Config:
        from_attributes = True


class AnnouncementItem(BaseModel):
    id: UUID
    title: str
    content: Optional[str] = None
    publish_at: datetime

    class Config:
        from_attributes = True


class EventItem(BaseModel):
    id: UUID
    title: str
    type: str
    location: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    deadline: datetime
    requires_approval: bool
    target_audience: List[str]

    class Config:
        from_attributes = True

from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.aggregates.attendance import AttendanceStats, MonthlyAttendance
from app.core.enums import AttendanceStatus


# ----- Views -----
class AttendanceRecordItem(BaseModel):
    id: UUID
    date: date
    status: str
    remarks: Optional[str] = None

    class Config:
        from_attributes = True


class AttendanceHistory(BaseModel):
    """Attendance history of one student: every record, overall stats and the last 6 months."""

    student_id: UUID
    student_name: str
    class_name: Optional[str] = None
    section_name: Optional[str] = None
    records: List[AttendanceRecordItem]
    stats: AttendanceStats
    monthly_stats: List[MonthlyAttendance]


class TeacherSectionAttendance(BaseModel):
    section_id: UUID
    label: str
    student_count: int
    is_marked_today: bool


class RosterEntry(BaseModel):
    student_id: UUID
    student_name: str
    roll_number: Optional[str] = None
    status: Optional[str] = None  # None until marked today
    remarks: Optional[str] = None


class TeacherAttendanceOverview(BaseModel):
    date: date
    sections: List[TeacherSectionAttendance]
    selected_section_id: Optional[UUID] = None
    roster: List[RosterEntry]


# ----- Marking -----
class AttendanceEntry(BaseModel):
    student_id: UUID
    status: AttendanceStatus
    remarks: Optional[str] = Field(None, max_length=500)


class AttendanceMarkRequest(BaseModel):
    """Mark (or re-mark) a section's attendance for one date."""

    section_id: UUID
    date: date
    entries: List[AttendanceEntry] = Field(..., min_length=1)


class AttendanceMarkResult(BaseModel):
    section_id: UUID
    date: date
    created: int
    updated: int

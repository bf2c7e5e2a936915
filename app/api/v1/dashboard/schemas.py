from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from app.core.aggregates.dashboard import ApprovalCounts, PendingEventApproval
from app.core.aggregates.fees import InvoiceSummary
from app.core.schemas import AnnouncementItem, EventItem, StudentInfo, SubjectInfo


class TimetableEntry(BaseModel):
    id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    subject_id: UUID
    subject_name: str
    subject_color: Optional[str] = None
    teacher_name: Optional[str] = None
    section_label: Optional[str] = None
    room: Optional[str] = None


class RecentGrade(BaseModel):
    assessment_id: UUID
    title: str
    subject_name: str
    subject_color: Optional[str] = None
    marks_obtained: float
    total_marks: int
    percentage: int
    grade: Optional[str] = None
    date: date


# ----- Student -----
class StudentDashboard(BaseModel):
    student_id: UUID
    student_name: str
    class_name: Optional[str] = None
    section_name: Optional[str] = None
    attendance_percentage: int = 0
    assessment_count: int = 0
    upcoming_events: List[EventItem] = []
    today_classes: List[TimetableEntry] = []
    recent_grades: List[RecentGrade] = []
    announcements: List[AnnouncementItem] = []


class StudentTimetable(BaseModel):
    section_id: Optional[UUID] = None
    # day_of_week (0=Monday) -> slots in start-time order
    days: Dict[int, List[TimetableEntry]] = {}


# ----- Teacher -----
class TeacherSectionSummary(BaseModel):
    section_id: UUID
    label: str
    student_count: int = 0


class AssessmentSummary(BaseModel):
    id: UUID
    title: str
    type: str
    section_id: UUID
    section_label: Optional[str] = None
    subject_name: Optional[str] = None
    date: date
    total_marks: int
    graded_count: int = 0
    student_count: int = 0


class TeacherDashboard(BaseModel):
    teacher_id: UUID
    teacher_name: str
    sections: List[TeacherSectionSummary] = []
    total_students: int = 0
    today_classes: List[TimetableEntry] = []
    sections_pending_attendance: List[TeacherSectionSummary] = []
    assessments_needing_grading: List[AssessmentSummary] = []
    recent_assessments: List[AssessmentSummary] = []


class TeacherClassSection(BaseModel):
    section_id: UUID
    name: str
    class_id: UUID
    class_name: str
    is_class_teacher: bool = False
    capacity: Optional[int] = None
    student_count: int = 0
    students: List[StudentInfo] = []


class TeacherClasses(BaseModel):
    """Sections the teacher works with, ordered by class then section, with rosters."""

    teacher_id: UUID
    sections: List[TeacherClassSection] = []
    subjects: List[SubjectInfo] = []


# ----- Parent -----
class ChildSummary(BaseModel):
    student_id: UUID
    student_name: str
    class_name: Optional[str] = None
    section_name: Optional[str] = None
    attendance_percentage: int = 0
    outstanding_fees: Decimal = Decimal("0")
    latest_grade: Optional[RecentGrade] = None


class ParentDashboard(BaseModel):
    parent_id: UUID
    children: List[ChildSummary] = []
    average_attendance: Optional[int] = None
    total_outstanding: Decimal = Decimal("0")
    announcements: List[AnnouncementItem] = []
    pending_approvals: List[PendingEventApproval] = []


# ----- Admin -----
class ClassEnrollment(BaseModel):
    class_id: UUID
    class_name: str
    student_count: int = 0


class AdminDashboard(BaseModel):
    users_by_role: Dict[str, int] = {}
    total_students: int = 0
    total_teachers: int = 0
    total_parents: int = 0
    total_classes: int = 0
    total_sections: int = 0
    total_subjects: int = 0
    fees: InvoiceSummary
    students_per_class: List[ClassEnrollment] = []
    approvals: ApprovalCounts
    generated_at: datetime

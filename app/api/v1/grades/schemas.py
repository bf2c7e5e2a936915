from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.aggregates.grades import GradebookRow, GradebookStats, ScoreStats, SubjectScores
from app.core.enums import AssessmentType, TrendDirection
from app.core.schemas import SectionInfo, SubjectInfo


class GradeResultItem(BaseModel):
    id: UUID
    assessment_id: UUID
    title: str
    type: AssessmentType
    subject_id: UUID
    subject_name: str
    subject_color: Optional[str] = None
    marks_obtained: float
    total_marks: int
    percentage: int
    grade: Optional[str] = None
    date: date
    remarks: Optional[str] = None


class GradesReport(BaseModel):
    """All results of one student, newest first, with per-subject and overall stats.

    trend compares the student's overall average with the section cohort's average.
    """

    student_id: UUID
    student_name: str
    class_name: Optional[str] = None
    section_name: Optional[str] = None
    results: List[GradeResultItem]
    subject_stats: List[SubjectScores]
    overall: ScoreStats
    section_average: Optional[float] = None
    trend: Optional[TrendDirection] = None


class GradebookAssessment(BaseModel):
    id: UUID
    title: str
    type: AssessmentType
    total_marks: int
    date: date
    subject_id: UUID
    subject_name: str
    subject_color: Optional[str] = None


class Gradebook(BaseModel):
    section_id: Optional[UUID] = None
    section_label: Optional[str] = None
    subject_id: Optional[UUID] = None
    assessments: List[GradebookAssessment]
    rows: List[GradebookRow]
    stats: GradebookStats


class TeacherAssessmentItem(BaseModel):
    """An assessment the teacher created, with grading progress for its section."""

    id: UUID
    title: str
    type: AssessmentType
    total_marks: int
    date: date
    description: Optional[str] = None
    section_id: UUID
    section_label: str
    subject_id: UUID
    subject_name: str
    subject_color: Optional[str] = None
    graded_count: int = 0
    total_students: int = 0
    created_at: datetime


class TeacherAssessments(BaseModel):
    assessments: List[TeacherAssessmentItem]
    # Filter options: every section and subject the teacher works with.
    sections: List[SectionInfo]
    subjects: List[SubjectInfo]


class ResultEntry(BaseModel):
    student_id: UUID
    marks_obtained: float = Field(..., ge=0)
    remarks: Optional[str] = Field(None, max_length=500)


class RecordResultsRequest(BaseModel):
    entries: List[ResultEntry] = Field(..., min_length=1)


class RecordResultsResult(BaseModel):
    assessment_id: UUID
    created: int
    updated: int

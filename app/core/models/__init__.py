from app.core.models.tenant import Tenant
from app.core.models.class_model import SchoolClass
from app.core.models.section_model import Section
from app.core.models.subject import Subject
from app.core.models.class_teacher_assignment import SectionTeacher
from app.core.models.teacher_subject_assignment import SectionSubjectTeacher
from app.core.models.timetable import TimetableSlot
from app.core.models.announcement import Announcement
from app.core.models.student_attendance import Attendance
from app.core.models.assessment import Assessment, AssessmentResult
from app.core.models.fee_invoice import FeeInvoice, FeeStructure
from app.core.models.event import Event, EventApproval
from app.core.models.conversation import Conversation, Message

__all__ = [
    "Announcement",
    "Assessment",
    "AssessmentResult",
    "Attendance",
    "Conversation",
    "Event",
    "EventApproval",
    "FeeInvoice",
    "FeeStructure",
    "Message",
    "SchoolClass",
    "Section",
    "SectionSubjectTeacher",
    "SectionTeacher",
    "Subject",
    "Tenant",
    "TimetableSlot",
]

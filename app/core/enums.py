from enum import Enum


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
    PARENT = "PARENT"


ADMIN_ROLES = (UserRole.SUPER_ADMIN.value, UserRole.ADMIN.value)


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class AssessmentType(str, Enum):
    TEST = "TEST"
    QUIZ = "QUIZ"
    ASSIGNMENT = "ASSIGNMENT"
    EXAM = "EXAM"


class InvoiceStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class EventType(str, Enum):
    TRIP = "TRIP"
    SPORTS = "SPORTS"
    CULTURAL = "CULTURAL"
    ACADEMIC = "ACADEMIC"
    MEETING = "MEETING"
    OTHER = "OTHER"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"


class SenderRole(str, Enum):
    TEACHER = "TEACHER"
    PARENT = "PARENT"

    @property
    def opposite(self) -> "SenderRole":
        return SenderRole.PARENT if self is SenderRole.TEACHER else SenderRole.TEACHER


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    FLAT = "FLAT"


# Event target_audience sentinel meaning "every enrolled student of the school".
AUDIENCE_ALL = "All"

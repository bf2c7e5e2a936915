"""Section teachers: teachers attached to a section, at most one flagged as class teacher.
Grants attendance marking, grading and parent messaging for the section's students."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class SectionTeacher(Base):
    __tablename__ = "section_teachers"
    __table_args__ = (
        UniqueConstraint("section_id", "teacher_id", name="uq_section_teacher"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    section_id = Column(UUID(as_uuid=True), ForeignKey("sections.id", ondelete="CASCADE"), nullable=False)
    teacher_id = Column(UUID(as_uuid=True), ForeignKey("teacher_profiles.id", ondelete="CASCADE"), nullable=False)
    is_class_teacher = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

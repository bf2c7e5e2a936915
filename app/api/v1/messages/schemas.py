from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ConversationStart(BaseModel):
    """Start (or continue) the conversation about a student.

    A teacher names the parent, a parent names the teacher; the caller's own side is
    resolved from the session.
    """

    student_id: UUID
    teacher_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    subject: Optional[str] = Field(None, max_length=255)
    message: str = Field(..., min_length=1, max_length=5000)


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class MessageItem(BaseModel):
    id: UUID
    content: str
    sender_role: str
    sender_name: str
    is_read: bool
    created_at: datetime


class ConversationStartResult(BaseModel):
    conversation_id: UUID
    created: bool  # False when the message was appended to an existing conversation
    message: MessageItem


class ConversationThread(BaseModel):
    id: UUID
    student_id: UUID
    student_name: str
    teacher_id: UUID
    teacher_name: str
    parent_id: UUID
    parent_name: str
    subject: Optional[str] = None
    messages: List[MessageItem]


class ConversationSummary(BaseModel):
    id: UUID
    student_id: UUID
    student_name: str
    counterpart_id: UUID
    counterpart_name: str
    subject: Optional[str] = None
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    # Messages from the other participant not yet opened by the viewer.
    unread_count: int = 0
    updated_at: datetime


class ConversationList(BaseModel):
    conversations: List[ConversationSummary]
    total_unread: int


class UnreadTotal(BaseModel):
    unread: int


class ContactPerson(BaseModel):
    id: UUID
    name: str


class ContactEntry(BaseModel):
    """A student the viewer can message about, with the people on the other side."""

    student_id: UUID
    student_name: str
    section_label: Optional[str] = None
    contacts: List[ContactPerson]


class Contacts(BaseModel):
    entries: List[ContactEntry]

"""Request bodies of the /functions endpoints (tutor, grading, messaging, billing)."""

from typing import Optional
from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: str
    content: str


class TutorRequest(BaseModel):
    messages: list[ChatMessage]
    userId: Optional[str] = None


class GradeRequest(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    # "mcq" for multiple choice, anything else is graded as open-ended
    type: Optional[str] = None


class MessageIn(BaseModel):
    parent_id: str = Field(min_length=1)
    teacher_id: str = Field(min_length=1)
    content: str = Field(min_length=1)


class PortalRequest(BaseModel):
    customerId: str = Field(min_length=1)

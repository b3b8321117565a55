from typing import Optional
from pydantic import BaseModel, Field


class AssessmentAnswer(BaseModel):
    selected_index: int


class QuizAnswer(BaseModel):
    selected_index: Optional[int] = None
    text: Optional[str] = None


class AssessmentSave(BaseModel):
    """Body of the save-assessment endpoint. Every key must be present;
    ``score`` and ``feedback`` may be null while an answer is ungraded."""

    student_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    score: Optional[float]
    feedback: Optional[str]
    current_topic: str = Field(min_length=1)
    progress: dict


class AchievementIn(BaseModel):
    type: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""

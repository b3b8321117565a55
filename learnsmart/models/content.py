"""Subject → Topic → Lesson content and the question variants attached to it."""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class ContentType(str, Enum):
    MARKDOWN = "markdown"
    VIDEO = "video"
    QUIZ_LINK = "quiz_link"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


class Subject(BaseModel):
    id: str
    name: str
    description: str = ""


class Topic(BaseModel):
    id: str
    subject_id: str
    name: str
    description: str = ""
    order: int = 0


class Lesson(BaseModel):
    id: str
    topic_id: str
    title: str
    content_type: ContentType = ContentType.MARKDOWN
    content_markdown: Optional[str] = None
    content_url: Optional[str] = None
    order: int = 0
    duration_minutes: Optional[int] = None


# ── Question variants ───────────────────────────────────────────────

class Option(BaseModel):
    text: str


class _QuestionBase(BaseModel):
    id: str
    question_text: str
    explanation: Optional[str] = None
    difficulty: int = 1
    grade_level: str = ""


class MultipleChoiceQuestion(_QuestionBase):
    question_type: Literal["multiple_choice"] = "multiple_choice"
    options: list[Option]
    correct_option_index: int


class TrueFalseQuestion(_QuestionBase):
    question_type: Literal["true_false"] = "true_false"
    correct_answer_text: Literal["true", "false"]

    @property
    def options(self) -> list[Option]:
        return [Option(text="True"), Option(text="False")]


class ShortAnswerQuestion(_QuestionBase):
    question_type: Literal["short_answer"] = "short_answer"
    correct_answer_text: str


Question = Annotated[
    Union[MultipleChoiceQuestion, TrueFalseQuestion, ShortAnswerQuestion],
    Field(discriminator="question_type"),
]

_question_adapter = TypeAdapter(Question)


def question_from_record(record: dict) -> Question:
    """Build the typed variant for a stored question row.

    Rows carry every column; each variant keeps only the fields it needs.
    """
    data = {
        "id": record["id"],
        "question_text": record["question_text"],
        "question_type": record["question_type"],
        "explanation": record.get("explanation"),
        "difficulty": record.get("difficulty") or 1,
        "grade_level": record.get("grade_level") or "",
    }
    if record["question_type"] == QuestionType.MULTIPLE_CHOICE.value:
        data["options"] = [{"text": o.get("text", "")} for o in record.get("options") or []]
        data["correct_option_index"] = record.get("correct_option_index")
    else:
        answer = record.get("correct_answer_text") or ""
        if record["question_type"] == QuestionType.TRUE_FALSE.value:
            answer = answer.strip().lower()
        data["correct_answer_text"] = answer
    return _question_adapter.validate_python(data)


def question_for_student(question: Question, *, reveal: bool = False) -> dict:
    """Client view of a question; answer fields only when ``reveal`` is set."""
    out = {
        "id": question.id,
        "question_text": question.question_text,
        "question_type": question.question_type,
    }
    if question.question_type != QuestionType.SHORT_ANSWER.value:
        out["options"] = [o.text for o in question.options]
    if reveal:
        out["explanation"] = question.explanation
        if isinstance(question, MultipleChoiceQuestion):
            out["correct_option_index"] = question.correct_option_index
        else:
            out["correct_answer_text"] = question.correct_answer_text
    return out


# ── Admin authoring requests ────────────────────────────────────────

class SubjectIn(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""


class TopicIn(BaseModel):
    subject_id: str
    name: str = Field(min_length=1)
    description: str = ""
    order: int = 0


class LessonIn(BaseModel):
    topic_id: str
    title: str = Field(min_length=1)
    content_type: ContentType = ContentType.MARKDOWN
    # markdown body or URL, stored in the column matching content_type
    content: str = ""
    order: int = 0
    duration_minutes: Optional[int] = None


class AuthoredOption(BaseModel):
    text: str
    is_correct: bool = False


class QuestionIn(BaseModel):
    subject_id: Optional[str] = None
    topic_id: Optional[str] = None
    lesson_id: Optional[str] = None
    question_text: str = Field(min_length=1)
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    options: list[AuthoredOption] = []
    correct_answer_text: Optional[str] = None
    explanation: Optional[str] = None
    difficulty: int = 1
    grade_level: str = ""
    standard_codes: list[str] = []

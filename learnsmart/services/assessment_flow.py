"""
Initial skills assessment

A new student answers three grade-banded questions before the learning path
opens. The flow is a small state machine:

    INTRO --begin()--> QUESTIONS --advance() after last answer--> COMPLETE

Each answer is graded on submit and locked; advance() only moves on once the
current question has feedback. On completion one "initial" assessment record
is handed to the save callback. A failed save is logged and the flow still
completes; callers find out via has_completed_initial_assessment().
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class FlowStateError(ValueError):
    """Operation not allowed in the current stage."""


class AnswerLockedError(ValueError):
    """The current question already has an answer."""


class Stage(str, Enum):
    INTRO = "intro"
    QUESTIONS = "questions"
    COMPLETE = "complete"


@dataclass(frozen=True)
class AssessmentQuestion:
    id: str
    text: str
    options: tuple[str, ...]
    correct_index: int
    subject: str
    difficulty: int


# ─── Question bank ───────────────────────────────────────────────────────────

EARLY_TIER = (
    AssessmentQuestion("1", "What is 2 + 3?", ("4", "5", "6"), 1, "Math", 1),
    AssessmentQuestion("2", 'Which letter comes after "B"?', ("A", "C", "D"), 1, "Reading", 1),
    AssessmentQuestion("3", "How many sides does a triangle have?", ("2", "3", "4"), 1, "Math", 1),
)

MIDDLE_TIER = (
    AssessmentQuestion("1", "What is 7 × 8?", ("54", "56", "58"), 1, "Math", 2),
    AssessmentQuestion("2", 'What is the past tense of "run"?', ("runned", "ran", "running"), 1, "Reading", 2),
    AssessmentQuestion("3", "Which planet is closest to the Sun?", ("Venus", "Mercury", "Earth"), 1, "Science", 2),
)

UPPER_TIER = (
    AssessmentQuestion("1", "Solve for x: 2x + 5 = 13", ("3", "4", "5"), 1, "Math", 3),
    AssessmentQuestion("2", 'What is a synonym for "enormous"?', ("tiny", "huge", "average"), 1, "Reading", 3),
    AssessmentQuestion(
        "3",
        "What gas do plants absorb from the atmosphere during photosynthesis?",
        ("Oxygen", "Carbon Dioxide", "Nitrogen"),
        1,
        "Science",
        3,
    ),
)

_LEADING_INT_RE = re.compile(r"^\s*[+-]?\d+")


def grade_number(grade: Optional[str]) -> Optional[int]:
    """Numeric grade level: "K" is 0, otherwise the leading integer, else None."""
    if grade is None:
        return None
    if grade.strip().upper() == "K":
        return 0
    match = _LEADING_INT_RE.match(grade)
    return int(match.group(0)) if match else None


def questions_for_grade(grade: Optional[str]) -> tuple[AssessmentQuestion, ...]:
    """Pick the tier for a grade. Grades that don't parse land in the upper tier."""
    level = grade_number(grade)
    if level is not None and level <= 2:
        return EARLY_TIER
    if level is not None and level <= 5:
        return MIDDLE_TIER
    return UPPER_TIER


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentage(correct: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(correct / total * 100)


def feedback_for(question: AssessmentQuestion, correct: bool) -> str:
    if correct:
        return "Correct! Great job!"
    return f'Incorrect. The correct answer is "{question.options[question.correct_index]}".'


SaveCallback = Callable[[dict], Awaitable[None]]


@dataclass
class AssessmentFlow:
    student_id: str
    grade: str
    questions: tuple[AssessmentQuestion, ...] = field(init=False)
    stage: Stage = Stage.INTRO
    current_index: int = 0
    answers: list[dict] = field(default_factory=list)
    feedback: Optional[str] = None
    result: Optional[dict] = None
    saved: Optional[bool] = None
    handed_off: bool = False

    def __post_init__(self):
        self.questions = questions_for_grade(self.grade)

    @property
    def current_question(self) -> Optional[AssessmentQuestion]:
        if self.stage != Stage.QUESTIONS:
            return None
        return self.questions[self.current_index]

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self.answers if a["correct"])

    def begin(self) -> None:
        if self.stage != Stage.INTRO:
            raise FlowStateError(f"Assessment already {self.stage.value}")
        self.stage = Stage.QUESTIONS

    def submit(self, selected_index: int) -> dict:
        """Grade the answer to the current question and lock it."""
        question = self.current_question
        if question is None:
            raise FlowStateError("No question is open for answers")
        if self.feedback is not None:
            raise AnswerLockedError("This question has already been answered")
        if not 0 <= selected_index < len(question.options):
            raise ValueError(f"selected_index must be between 0 and {len(question.options) - 1}")

        correct = selected_index == question.correct_index
        self.answers.append({
            "question_id": question.id,
            "selected_index": selected_index,
            "correct": correct,
        })
        self.feedback = feedback_for(question, correct)
        return {
            "correct": correct,
            "feedback": self.feedback,
            "correct_index": question.correct_index,
        }

    async def advance(self, save: SaveCallback) -> Stage:
        """Move past an answered question; completing after the last one."""
        if self.stage != Stage.QUESTIONS:
            raise FlowStateError("No question to move past")
        if self.feedback is None:
            raise FlowStateError("Answer the current question first")

        self.feedback = None
        if self.current_index + 1 < len(self.questions):
            self.current_index += 1
            return self.stage

        await self._complete(save)
        return self.stage

    def completion_record(self) -> dict:
        total = len(self.questions)
        correct = self.correct_count
        subjects: list[str] = []
        for q in self.questions:
            if q.subject not in subjects:
                subjects.append(q.subject)
        return {
            "assessment_type": "initial",
            "completed": True,
            "score": percentage(correct, total),
            "total_questions": total,
            "correct_answers": correct,
            "assessment_data": {
                "answers": list(self.answers),
                "grade": self.grade,
                "subjects_tested": subjects,
            },
        }

    async def _complete(self, save: SaveCallback) -> None:
        record = self.completion_record()
        self.result = {
            "score": record["score"],
            "total_questions": record["total_questions"],
            "correct_answers": record["correct_answers"],
        }
        try:
            await save(record)
            self.saved = True
        except Exception:
            logger.exception("Failed to save initial assessment for student %s", self.student_id)
            self.saved = False
        self.stage = Stage.COMPLETE

    async def hand_off(self, delay: float, on_done: Callable[[], None]) -> None:
        """Wait ``delay`` seconds after completion, then tell the owner."""
        if self.stage != Stage.COMPLETE:
            raise FlowStateError("Assessment is not complete")
        await asyncio.sleep(delay)
        self.handed_off = True
        on_done()

    def view(self) -> dict:
        """Client view; the correct index only appears once the question is answered."""
        out = {
            "stage": self.stage.value,
            "grade": self.grade,
            "total_questions": len(self.questions),
            "question_number": self.current_index + 1 if self.stage == Stage.QUESTIONS else None,
            "question": None,
            "feedback": self.feedback,
            "result": self.result,
        }
        question = self.current_question
        if question is not None:
            out["question"] = {
                "id": question.id,
                "text": question.text,
                "options": list(question.options),
                "subject": question.subject,
                "difficulty": question.difficulty,
            }
            if self.feedback is not None:
                out["question"]["correct_index"] = question.correct_index
                out["selected_index"] = self.answers[-1]["selected_index"]
        return out

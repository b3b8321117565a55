"""Lesson quiz engine: one question at a time, answers lock, a running score."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from learnsmart.models.content import (
    Question,
    MultipleChoiceQuestion,
    TrueFalseQuestion,
    ShortAnswerQuestion,
    question_for_student,
)
from learnsmart.services.assessment_flow import AnswerLockedError, FlowStateError, percentage

logger = logging.getLogger(__name__)


@dataclass
class QuestionState:
    # Separate from selected_index: a short answer leaves the index unset
    answered: bool = False
    selected_index: Optional[int] = None
    text: Optional[str] = None
    correct: Optional[bool] = None


def is_correct(question: Question, selected_index: Optional[int] = None, text: Optional[str] = None) -> bool:
    """Grade one answer. Raises ValueError when the answer doesn't fit the question type."""
    if isinstance(question, MultipleChoiceQuestion):
        if selected_index is None or not 0 <= selected_index < len(question.options):
            raise ValueError(f"selected_index must be between 0 and {len(question.options) - 1}")
        return selected_index == question.correct_option_index

    if isinstance(question, TrueFalseQuestion):
        if selected_index not in (0, 1):
            raise ValueError("selected_index must be 0 (True) or 1 (False)")
        return (selected_index == 0 and question.correct_answer_text == "true") or (
            selected_index == 1 and question.correct_answer_text == "false"
        )

    if isinstance(question, ShortAnswerQuestion):
        if text is None or not text.strip():
            raise ValueError("A text answer is required")
        return text.strip().lower() == question.correct_answer_text.strip().lower()

    raise ValueError(f"Unsupported question type: {question.question_type}")


class QuizEngine:
    def __init__(
        self,
        lesson_id: str,
        questions: list[Question],
        on_complete: Optional[Callable[[int, int], None]] = None,
    ):
        if not questions:
            raise ValueError("This lesson has no quiz questions")
        self.lesson_id = lesson_id
        self.questions = list(questions)
        self.states = [QuestionState() for _ in self.questions]
        self.current_index = 0
        self.score = 0
        self.completed = False
        self._on_complete = on_complete

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if self.completed:
            return None
        return self.questions[self.current_index]

    def answer(self, selected_index: Optional[int] = None, text: Optional[str] = None) -> dict:
        question = self.current_question
        if question is None:
            raise FlowStateError("Quiz is already complete")
        state = self.states[self.current_index]
        if state.answered:
            raise AnswerLockedError("This question has already been answered")

        correct = is_correct(question, selected_index, text)
        state.answered = True
        state.correct = correct
        if isinstance(question, ShortAnswerQuestion):
            state.text = text
        else:
            state.selected_index = selected_index
        if correct:
            self.score += 1

        return {
            "correct": correct,
            "explanation": question.explanation,
            "question": question_for_student(question, reveal=True),
            "score": self.score,
        }

    def next(self) -> dict:
        """Advance to the next question, or finish after the last one."""
        if self.completed:
            raise FlowStateError("Quiz is already complete")
        if not self.states[self.current_index].answered:
            raise FlowStateError("Answer the current question first")

        if self.current_index + 1 < self.total:
            self.current_index += 1
            return self.view()

        self.completed = True
        logger.info("Quiz for lesson %s finished: %d/%d", self.lesson_id, self.score, self.total)
        if self._on_complete is not None:
            self._on_complete(self.score, self.total)
        return self.view()

    def result(self) -> Optional[dict]:
        if not self.completed:
            return None
        return {
            "score": self.score,
            "total": self.total,
            "percentage": percentage(self.score, self.total),
        }

    def view(self) -> dict:
        out = {
            "lesson_id": self.lesson_id,
            "completed": self.completed,
            "question_number": None if self.completed else self.current_index + 1,
            "total_questions": self.total,
            "score": self.score,
            "question": None,
            "answered": False,
            "result": self.result(),
        }
        question = self.current_question
        if question is not None:
            state = self.states[self.current_index]
            out["answered"] = state.answered
            out["question"] = question_for_student(question, reveal=state.answered)
            if state.answered:
                out["correct"] = state.correct
                out["selected_index"] = state.selected_index
        return out

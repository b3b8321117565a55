"""In-memory, per-user sessions for the assessment flow and the lesson quiz.

State lives in this process only. A restart (or logout) drops every open
assessment and quiz; students simply start again.
"""

import logging
from typing import Optional

from learnsmart.services.assessment_flow import AssessmentFlow
from learnsmart.services.quiz_engine import QuizEngine

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self):
        self._assessments: dict[str, AssessmentFlow] = {}
        self._quizzes: dict[str, QuizEngine] = {}

    # ── Assessment ──────────────────────────────────────────────────

    def get_assessment(self, user_id: str) -> Optional[AssessmentFlow]:
        return self._assessments.get(user_id)

    def put_assessment(self, user_id: str, flow: AssessmentFlow) -> None:
        self._assessments[user_id] = flow

    def drop_assessment(self, user_id: str, flow: Optional[AssessmentFlow] = None) -> None:
        """Forget the user's flow; with ``flow`` given, only if it is still the current one."""
        current = self._assessments.get(user_id)
        if current is None or (flow is not None and current is not flow):
            return
        del self._assessments[user_id]
        logger.debug("Dropped assessment session for %s", user_id)

    # ── Quiz ────────────────────────────────────────────────────────

    def get_quiz(self, user_id: str) -> Optional[QuizEngine]:
        return self._quizzes.get(user_id)

    def put_quiz(self, user_id: str, quiz: QuizEngine) -> None:
        self._quizzes[user_id] = quiz

    def drop_quiz(self, user_id: str) -> None:
        self._quizzes.pop(user_id, None)

    def teardown(self, user_id: str) -> None:
        """Discard everything held for a user (logout)."""
        self.drop_assessment(user_id)
        self.drop_quiz(user_id)

    def clear(self) -> None:
        self._assessments.clear()
        self._quizzes.clear()


sessions = SessionRegistry()

import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from learnsmart.config import settings
from learnsmart.db.database import get_db
from learnsmart.db import accounts as accounts_db
from learnsmart.db import content as content_db
from learnsmart.db import learning as learning_db
from learnsmart.models.learning import AssessmentAnswer, QuizAnswer
from learnsmart.models.user import Role
from learnsmart.routes.auth import require_role
from learnsmart.services.assessment_flow import AnswerLockedError, AssessmentFlow, FlowStateError, Stage
from learnsmart.services.learning_path import build_learning_path, complete_lesson, lesson_questions, open_lesson
from learnsmart.services.quiz_engine import QuizEngine
from learnsmart.services.sessions import sessions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/student", tags=["student"])

require_student = require_role(Role.STUDENT)


def _flow_error(exc: ValueError) -> HTTPException:
    """Out-of-order or repeated actions are conflicts; bad input is a 400."""
    if isinstance(exc, (FlowStateError, AnswerLockedError)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ── Initial assessment ──────────────────────────────────────────────

@router.get("/assessment/status")
async def assessment_status(request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    flow = sessions.get_assessment(user.user_id)
    return {
        "has_initial_assessment": await learning_db.has_completed_initial_assessment(db, user.user_id),
        "in_progress": flow.stage.value if flow else None,
    }


@router.post("/assessment/start")
async def start_assessment(request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    if await learning_db.has_completed_initial_assessment(db, user.user_id):
        raise HTTPException(status_code=409, detail="Initial assessment already completed")

    flow = sessions.get_assessment(user.user_id)
    if flow is None or flow.stage == Stage.COMPLETE:
        student = await accounts_db.get_student(db, user.user_id)
        grade = (student or {}).get("grade") or user.grade or "K"
        flow = AssessmentFlow(student_id=user.user_id, grade=grade)
        sessions.put_assessment(user.user_id, flow)
        logger.info("Started initial assessment for %s (grade %s)", user.user_id, grade)
    return flow.view()


def _require_flow(user_id: str) -> AssessmentFlow:
    flow = sessions.get_assessment(user_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="No assessment in progress")
    return flow


@router.get("/assessment/current")
async def current_assessment(request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    return _require_flow(user.user_id).view()


@router.post("/assessment/begin")
async def begin_assessment(request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    flow = _require_flow(user.user_id)
    try:
        flow.begin()
    except ValueError as exc:
        raise _flow_error(exc)
    return flow.view()


@router.post("/assessment/answer")
async def answer_assessment(body: AssessmentAnswer, request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    flow = _require_flow(user.user_id)
    try:
        outcome = flow.submit(body.selected_index)
    except ValueError as exc:
        raise _flow_error(exc)
    return {**flow.view(), **outcome}


@router.post("/assessment/next")
async def next_assessment(request: Request, background_tasks: BackgroundTasks, db=Depends(get_db)):
    user = await require_student(request, db)
    flow = _require_flow(user.user_id)

    async def save(record: dict) -> None:
        await learning_db.create_assessment(db, user.user_id, **record)

    try:
        stage = await flow.advance(save)
    except ValueError as exc:
        raise _flow_error(exc)

    if stage == Stage.COMPLETE:
        user_id = user.user_id
        background_tasks.add_task(
            flow.hand_off,
            settings.assessment_handoff_seconds,
            lambda: sessions.drop_assessment(user_id, flow),
        )
    return {**flow.view(), "saved": flow.saved}


# ── Learning path and lessons ───────────────────────────────────────

@router.get("/learning-path")
async def learning_path(request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    return await build_learning_path(db, user.user_id)


@router.get("/lessons/{lesson_id}")
async def get_lesson(lesson_id: str, request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    lesson = await open_lesson(db, user.user_id, lesson_id)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return lesson


@router.post("/lessons/{lesson_id}/complete")
async def mark_complete(lesson_id: str, request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    path = await complete_lesson(db, user.user_id, lesson_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return path


# ── Lesson quiz ─────────────────────────────────────────────────────

@router.post("/lessons/{lesson_id}/quiz/start")
async def start_quiz(lesson_id: str, request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    if await content_db.get_lesson(db, lesson_id) is None:
        raise HTTPException(status_code=404, detail="Lesson not found")

    questions = await lesson_questions(db, lesson_id)
    user_id = user.user_id

    def on_complete(score: int, total: int) -> None:
        logger.info("Student %s scored %d/%d on lesson %s quiz", user_id, score, total, lesson_id)

    try:
        quiz = QuizEngine(lesson_id, questions, on_complete=on_complete)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    sessions.put_quiz(user_id, quiz)
    return quiz.view()


def _require_quiz(user_id: str) -> QuizEngine:
    quiz = sessions.get_quiz(user_id)
    if quiz is None:
        raise HTTPException(status_code=404, detail="No quiz in progress")
    return quiz


@router.get("/quiz/current")
async def current_quiz(request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    return _require_quiz(user.user_id).view()


@router.post("/quiz/answer")
async def answer_quiz(body: QuizAnswer, request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    quiz = _require_quiz(user.user_id)
    try:
        return quiz.answer(selected_index=body.selected_index, text=body.text)
    except ValueError as exc:
        raise _flow_error(exc)


@router.post("/quiz/next")
async def next_quiz(request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    quiz = _require_quiz(user.user_id)
    try:
        return quiz.next()
    except ValueError as exc:
        raise _flow_error(exc)


# ── Dashboard ───────────────────────────────────────────────────────

@router.get("/dashboard")
async def student_dashboard(request: Request, db=Depends(get_db)):
    user = await require_student(request, db)
    student = await accounts_db.get_student(db, user.user_id) or {}
    return {
        "user": user.model_dump(mode="json"),
        "points": student.get("points", 0),
        "streak_days": student.get("streak_days", 0),
        "weekly_goal": student.get("weekly_goal", 20),
        "achievements": await learning_db.get_achievements(db, user.user_id),
        "completed_lessons": await learning_db.count_completed_lessons(db, user.user_id),
        "has_initial_assessment": await learning_db.has_completed_initial_assessment(db, user.user_id),
    }

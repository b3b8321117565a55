"""
Admin-only endpoints protected by JWT admin role.

Users and roles, the Subject → Topic → Lesson content tree, question banks
and achievements.
"""

import logging
import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from learnsmart.db.database import get_db
from learnsmart.db import accounts as accounts_db
from learnsmart.db import content as content_db
from learnsmart.db import learning as learning_db
from learnsmart.models.content import ContentType, LessonIn, QuestionIn, QuestionType, SubjectIn, TopicIn
from learnsmart.models.learning import AchievementIn
from learnsmart.models.user import Role
from learnsmart.routes.auth import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

_require_admin = require_role(Role.ADMIN)


class RoleChange(BaseModel):
    role: Role


# ── Users ───────────────────────────────────────────────────────────

@router.get("/users")
async def list_users(request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    return {"users": await accounts_db.list_users(db)}


@router.put("/users/{user_id}/role")
async def change_role(user_id: str, body: RoleChange, request: Request, db=Depends(get_db)):
    """Change another user's role. Admins cannot change their own."""
    admin = await _require_admin(request, db)
    if user_id == admin.user_id:
        raise HTTPException(status_code=400, detail="You cannot change your own role")
    if not await accounts_db.update_user_role(db, user_id, body.role.value):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s set role of %s to %s", admin.user_id, user_id, body.role.value)
    return await accounts_db.get_user(db, user_id)


# ── Subjects ────────────────────────────────────────────────────────

@router.get("/subjects")
async def list_subjects(request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    return {"subjects": await content_db.list_subjects(db)}


@router.post("/subjects")
async def create_subject(body: SubjectIn, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    subject_id = await content_db.create_subject(db, body.name, body.description)
    return await content_db.get_subject(db, subject_id)


@router.put("/subjects/{subject_id}")
async def update_subject(subject_id: str, body: SubjectIn, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if not await content_db.update_subject(db, subject_id, body.name, body.description):
        raise HTTPException(status_code=404, detail="Subject not found")
    return await content_db.get_subject(db, subject_id)


@router.delete("/subjects/{subject_id}")
async def delete_subject(subject_id: str, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if not await content_db.delete_subject(db, subject_id):
        raise HTTPException(status_code=404, detail="Subject not found")
    return {"success": True}


# ── Topics ──────────────────────────────────────────────────────────

@router.get("/subjects/{subject_id}/topics")
async def list_topics(subject_id: str, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    return {"topics": await content_db.list_topics(db, subject_id)}


@router.post("/topics")
async def create_topic(body: TopicIn, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if await content_db.get_subject(db, body.subject_id) is None:
        raise HTTPException(status_code=404, detail="Subject not found")
    topic_id = await content_db.create_topic(db, body.subject_id, body.name, body.description, body.order)
    return await content_db.get_topic(db, topic_id)


@router.put("/topics/{topic_id}")
async def update_topic(topic_id: str, body: TopicIn, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if not await content_db.update_topic(db, topic_id, body.name, body.description, body.order):
        raise HTTPException(status_code=404, detail="Topic not found")
    return await content_db.get_topic(db, topic_id)


@router.delete("/topics/{topic_id}")
async def delete_topic(topic_id: str, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if not await content_db.delete_topic(db, topic_id):
        raise HTTPException(status_code=404, detail="Topic not found")
    return {"success": True}


# ── Lessons ─────────────────────────────────────────────────────────

def _lesson_columns(body: LessonIn) -> dict:
    """Store the content in the column its type reads from."""
    if body.content_type == ContentType.MARKDOWN:
        return {"content_markdown": body.content, "content_url": None}
    if not body.content.strip():
        raise HTTPException(status_code=400, detail=f"A URL is required for {body.content_type.value} lessons")
    return {"content_markdown": None, "content_url": body.content.strip()}


@router.get("/topics/{topic_id}/lessons")
async def list_lessons(topic_id: str, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    return {"lessons": await content_db.list_lessons(db, topic_id)}


def _order_conflict(order: int) -> HTTPException:
    return HTTPException(status_code=409, detail=f"Order {order} is already used in this topic")


@router.post("/lessons")
async def create_lesson(body: LessonIn, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if await content_db.get_topic(db, body.topic_id) is None:
        raise HTTPException(status_code=404, detail="Topic not found")
    if await content_db.order_taken(db, body.topic_id, body.order):
        raise _order_conflict(body.order)
    try:
        lesson_id = await content_db.create_lesson(
            db,
            topic_id=body.topic_id,
            title=body.title,
            content_type=body.content_type.value,
            order=body.order,
            duration_minutes=body.duration_minutes,
            **_lesson_columns(body),
        )
    except aiosqlite.IntegrityError:
        # Lost a race with a concurrent create for the same slot
        raise _order_conflict(body.order)
    return await content_db.get_lesson(db, lesson_id)


@router.put("/lessons/{lesson_id}")
async def update_lesson(lesson_id: str, body: LessonIn, request: Request, db=Depends(get_db)):
    """Edit a lesson. A new ``topic_id`` moves it; the order must be free in the target topic."""
    await _require_admin(request, db)
    existing = await content_db.get_lesson(db, lesson_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    if body.topic_id != existing["topic_id"] and await content_db.get_topic(db, body.topic_id) is None:
        raise HTTPException(status_code=404, detail="Topic not found")
    if await content_db.order_taken(db, body.topic_id, body.order, exclude_lesson_id=lesson_id):
        raise _order_conflict(body.order)
    try:
        await content_db.update_lesson(
            db,
            lesson_id,
            topic_id=body.topic_id,
            title=body.title,
            content_type=body.content_type.value,
            order=body.order,
            duration_minutes=body.duration_minutes,
            **_lesson_columns(body),
        )
    except aiosqlite.IntegrityError:
        raise _order_conflict(body.order)
    if body.topic_id != existing["topic_id"]:
        logger.info("Moved lesson %s from topic %s to %s", lesson_id, existing["topic_id"], body.topic_id)
    return await content_db.get_lesson(db, lesson_id)


@router.delete("/lessons/{lesson_id}")
async def delete_lesson(lesson_id: str, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if not await content_db.delete_lesson(db, lesson_id):
        raise HTTPException(status_code=404, detail="Lesson not found")
    return {"success": True}


# ── Questions ───────────────────────────────────────────────────────

def _question_fields(body: QuestionIn) -> dict:
    """Check an authored question and turn it into storage columns.

    Exactly one scope id must be set. Multiple-choice options carry an
    is_correct flag; exactly one must be flagged and its position becomes
    correct_option_index.
    """
    scopes = [s for s in (body.subject_id, body.topic_id, body.lesson_id) if s]
    if len(scopes) != 1:
        raise HTTPException(status_code=400, detail="Set exactly one of subject_id, topic_id or lesson_id")

    fields = body.model_dump(exclude={"options", "correct_answer_text"})
    fields["question_type"] = body.question_type.value
    fields["options"] = []
    fields["correct_option_index"] = None
    fields["correct_answer_text"] = None

    if body.question_type == QuestionType.MULTIPLE_CHOICE:
        if len(body.options) < 2:
            raise HTTPException(status_code=400, detail="Multiple choice questions need at least two options")
        flagged = [i for i, o in enumerate(body.options) if o.is_correct]
        if len(flagged) != 1:
            raise HTTPException(status_code=400, detail="Mark exactly one option as correct")
        fields["options"] = [{"text": o.text} for o in body.options]
        fields["correct_option_index"] = flagged[0]
    elif body.question_type == QuestionType.TRUE_FALSE:
        answer = (body.correct_answer_text or "").strip().lower()
        if answer not in ("true", "false"):
            raise HTTPException(status_code=400, detail='correct_answer_text must be "true" or "false"')
        fields["correct_answer_text"] = answer
    else:
        if not (body.correct_answer_text or "").strip():
            raise HTTPException(status_code=400, detail="Short answer questions need correct_answer_text")
        fields["correct_answer_text"] = body.correct_answer_text.strip()
    return fields


@router.get("/questions")
async def list_questions(request: Request, scope: str, scope_id: str, db=Depends(get_db)):
    """Questions of one subject, topic or lesson, ordered by difficulty."""
    await _require_admin(request, db)
    if scope not in ("subject", "topic", "lesson"):
        raise HTTPException(status_code=400, detail="scope must be subject, topic or lesson")
    return {"questions": await content_db.list_questions(db, scope, scope_id)}


@router.post("/questions")
async def create_question(body: QuestionIn, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    question_id = await content_db.save_question(db, _question_fields(body))
    return await content_db.get_question(db, question_id)


@router.put("/questions/{question_id}")
async def update_question(question_id: str, body: QuestionIn, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if await content_db.get_question(db, question_id) is None:
        raise HTTPException(status_code=404, detail="Question not found")
    await content_db.save_question(db, _question_fields(body), question_id=question_id)
    return await content_db.get_question(db, question_id)


@router.delete("/questions/{question_id}")
async def delete_question(question_id: str, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if not await content_db.delete_question(db, question_id):
        raise HTTPException(status_code=404, detail="Question not found")
    return {"success": True}


# ── Achievements ────────────────────────────────────────────────────

@router.post("/students/{student_id}/achievements")
async def award_achievement(student_id: str, body: AchievementIn, request: Request, db=Depends(get_db)):
    await _require_admin(request, db)
    if await accounts_db.get_student(db, student_id) is None:
        raise HTTPException(status_code=404, detail="Student not found")
    achievement_id = await learning_db.award_achievement(db, student_id, body.type, body.title, body.description)
    return {"id": achievement_id, "achievements": await learning_db.get_achievements(db, student_id)}

"""Student learning path: the Subject → Topic → Lesson tree with per-lesson progress."""

import logging
from typing import Optional

import aiosqlite
from pydantic import ValidationError

from learnsmart.db import content as content_db
from learnsmart.db import learning as learning_db
from learnsmart.models.content import ContentType, Question, question_for_student, question_from_record

logger = logging.getLogger(__name__)

NO_PROGRESS_MESSAGE = "No progress data available"
ASSESSMENT_REQUIRED_MESSAGE = "Complete the initial assessment to unlock your learning path"


def default_progress() -> dict:
    return {"completed": False, "score": 0, "time_spent": 0}


def _progress_view(row: Optional[dict]) -> dict:
    if not row:
        return default_progress()
    return {
        "completed": bool(row.get("completed")),
        "score": row.get("score") or 0,
        "time_spent": row.get("time_spent") or 0,
        "completed_at": row.get("completed_at"),
    }


def render_content(lesson: dict) -> dict:
    """Pick the column that matches the lesson's content type; the other one is ignored."""
    content_type = lesson.get("content_type") or ContentType.MARKDOWN.value
    if content_type == ContentType.MARKDOWN.value:
        return {"kind": "markdown", "markdown": lesson.get("content_markdown") or ""}
    if content_type == ContentType.VIDEO.value:
        return {"kind": "video", "url": lesson.get("content_url")}
    if content_type == ContentType.QUIZ_LINK.value:
        return {"kind": "quiz_link", "url": lesson.get("content_url")}
    raise ValueError(f"Unknown content type: {content_type}")


async def _build_tree(db: aiosqlite.Connection, student_id: str) -> list[dict]:
    progress = await learning_db.get_progress_by_lesson(db, student_id)
    subjects = []
    for subject in await content_db.list_subjects(db):
        topics = []
        for topic in await content_db.list_topics(db, subject["id"]):
            lessons = []
            for lesson in await content_db.list_lessons(db, topic["id"]):
                lesson["progress"] = _progress_view(progress.get(lesson["id"]))
                lessons.append(lesson)
            topic["lessons"] = lessons
            topics.append(topic)
        subject["topics"] = topics
        subjects.append(subject)
    return subjects


async def build_learning_path(db: aiosqlite.Connection, student_id: str) -> dict:
    """Learning path for a student, gated on the initial assessment.

    Storage failures are logged and produce an empty path carrying
    NO_PROGRESS_MESSAGE instead of an error.
    """
    try:
        if not await learning_db.has_completed_initial_assessment(db, student_id):
            return {
                "has_initial_assessment": False,
                "subjects": [],
                "message": ASSESSMENT_REQUIRED_MESSAGE,
            }
        subjects = await _build_tree(db, student_id)
    except Exception:
        logger.exception("Failed to load learning path for student %s", student_id)
        return {"has_initial_assessment": None, "subjects": [], "message": NO_PROGRESS_MESSAGE}

    return {
        "has_initial_assessment": True,
        "subjects": subjects,
        "message": None if subjects else NO_PROGRESS_MESSAGE,
    }


async def lesson_questions(db: aiosqlite.Connection, lesson_id: str) -> list[Question]:
    """Typed questions for a lesson, easiest first. Malformed rows are skipped."""
    questions = []
    for record in await content_db.list_questions(db, "lesson", lesson_id):
        try:
            questions.append(question_from_record(record))
        except ValidationError as exc:
            logger.warning("Skipping malformed question %s: %s", record.get("id"), exc)
    return questions


async def open_lesson(db: aiosqlite.Connection, student_id: str, lesson_id: str) -> Optional[dict]:
    """Full lesson with rendered content, its questions (answers hidden) and the student's progress."""
    lesson = await content_db.get_lesson(db, lesson_id)
    if lesson is None:
        return None
    questions = await lesson_questions(db, lesson_id)
    return {
        "lesson": lesson,
        "content": render_content(lesson),
        "questions": [question_for_student(q) for q in questions],
        "has_quiz": bool(questions),
        "progress": _progress_view(await learning_db.get_progress(db, student_id, lesson_id)),
    }


async def complete_lesson(db: aiosqlite.Connection, student_id: str, lesson_id: str) -> Optional[dict]:
    """Mark a lesson complete (idempotent) and return the refreshed learning path."""
    if await content_db.get_lesson(db, lesson_id) is None:
        return None
    await learning_db.mark_lesson_complete(db, student_id, lesson_id)
    logger.info("Student %s completed lesson %s", student_id, lesson_id)
    return await build_learning_path(db, student_id)

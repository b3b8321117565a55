"""
learning.py - Queries for per-student learning records

Provides insert/fetch functions for:
- learning_progress (one row per student and lesson)
- assessments (immutable attempt records)
- learning_paths (current topic snapshot written by the save-assessment endpoint)
- achievements
"""

import json
from typing import Optional, Any
import aiosqlite

from learnsmart.db.database import new_id, utcnow_iso, row_to_dict


# ══════════════════════════════════════════════════════════════════════════════
# LEARNING PROGRESS
# ══════════════════════════════════════════════════════════════════════════════

async def get_progress(db: aiosqlite.Connection, student_id: str, lesson_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute(
        """SELECT lesson_id, completed, score, time_spent, completed_at FROM learning_progress
           WHERE student_id = ? AND lesson_id = ?""",
        (student_id, lesson_id),
    )
    return row_to_dict(await cursor.fetchone())


async def get_progress_by_lesson(db: aiosqlite.Connection, student_id: str) -> dict[str, dict[str, Any]]:
    """All progress rows of a student keyed by lesson id."""
    cursor = await db.execute(
        """SELECT lesson_id, completed, score, time_spent, completed_at FROM learning_progress
           WHERE student_id = ?""",
        (student_id,),
    )
    return {r["lesson_id"]: row_to_dict(r) for r in await cursor.fetchall()}


async def mark_lesson_complete(db: aiosqlite.Connection, student_id: str, lesson_id: str) -> None:
    """Upsert the (student, lesson) progress row with completed set.

    Calling it again only refreshes completed_at; score and time spent are
    left as they are.
    """
    now = utcnow_iso()
    await db.execute(
        """INSERT INTO learning_progress (id, student_id, lesson_id, completed, completed_at, updated_at)
           VALUES (?, ?, ?, 1, ?, ?)
           ON CONFLICT (student_id, lesson_id) DO UPDATE SET
               completed = 1,
               completed_at = excluded.completed_at,
               updated_at = excluded.updated_at""",
        (new_id(), student_id, lesson_id, now, now),
    )
    await db.commit()


async def count_progress_rows(db: aiosqlite.Connection, student_id: str, lesson_id: str) -> int:
    cursor = await db.execute(
        "SELECT COUNT(*) AS n FROM learning_progress WHERE student_id = ? AND lesson_id = ?",
        (student_id, lesson_id),
    )
    row = await cursor.fetchone()
    return row["n"] if row else 0


async def count_completed_lessons(db: aiosqlite.Connection, student_id: str) -> int:
    cursor = await db.execute(
        "SELECT COUNT(*) AS n FROM learning_progress WHERE student_id = ? AND completed = 1",
        (student_id,),
    )
    row = await cursor.fetchone()
    return row["n"] if row else 0


# ══════════════════════════════════════════════════════════════════════════════
# ASSESSMENTS
# ══════════════════════════════════════════════════════════════════════════════

async def has_completed_initial_assessment(db: aiosqlite.Connection, student_id: str) -> bool:
    cursor = await db.execute(
        """SELECT id FROM assessments
           WHERE student_id = ? AND assessment_type = 'initial' AND completed = 1
           LIMIT 1""",
        (student_id,),
    )
    return await cursor.fetchone() is not None


async def create_assessment(
    db: aiosqlite.Connection,
    student_id: str,
    *,
    assessment_type: str,
    score: Optional[float],
    completed: bool,
    total_questions: Optional[int] = None,
    correct_answers: Optional[int] = None,
    question_id: Optional[str] = None,
    feedback: Optional[str] = None,
    assessment_data: Optional[dict[str, Any]] = None,
) -> str:
    """Insert one assessment record. Returns the new assessment id."""
    assessment_id = new_id()
    await db.execute(
        """INSERT INTO assessments (id, student_id, assessment_type, question_id, score,
                                    total_questions, correct_answers, completed, feedback,
                                    assessment_data, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            assessment_id,
            student_id,
            assessment_type,
            question_id,
            score,
            total_questions,
            correct_answers,
            int(completed),
            feedback,
            json.dumps(assessment_data) if assessment_data is not None else None,
            utcnow_iso(),
        ),
    )
    await db.commit()
    return assessment_id


async def get_assessments_by_student(
    db: aiosqlite.Connection, student_id: str, assessment_type: Optional[str] = None
) -> list[dict[str, Any]]:
    if assessment_type:
        cursor = await db.execute(
            """SELECT * FROM assessments WHERE student_id = ? AND assessment_type = ?
               ORDER BY created_at""",
            (student_id, assessment_type),
        )
    else:
        cursor = await db.execute(
            "SELECT * FROM assessments WHERE student_id = ? ORDER BY created_at",
            (student_id,),
        )
    return [row_to_dict(r, parse_json_fields=["assessment_data"]) for r in await cursor.fetchall()]


# ══════════════════════════════════════════════════════════════════════════════
# LEARNING PATHS
# ══════════════════════════════════════════════════════════════════════════════

async def upsert_learning_path(
    db: aiosqlite.Connection, student_id: str, current_topic: str, progress: dict[str, Any]
) -> None:
    await db.execute(
        """INSERT INTO learning_paths (student_id, current_topic, progress, updated_at)
           VALUES (?, ?, ?, ?)
           ON CONFLICT (student_id) DO UPDATE SET
               current_topic = excluded.current_topic,
               progress = excluded.progress,
               updated_at = excluded.updated_at""",
        (student_id, current_topic, json.dumps(progress), utcnow_iso()),
    )
    await db.commit()


async def get_learning_path(db: aiosqlite.Connection, student_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM learning_paths WHERE student_id = ?", (student_id,))
    return row_to_dict(await cursor.fetchone(), parse_json_fields=["progress"])


# ══════════════════════════════════════════════════════════════════════════════
# ACHIEVEMENTS
# ══════════════════════════════════════════════════════════════════════════════

async def award_achievement(
    db: aiosqlite.Connection, student_id: str, type_: str, title: str, description: str = ""
) -> str:
    achievement_id = new_id()
    await db.execute(
        """INSERT INTO achievements (id, student_id, type, title, description, earned_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (achievement_id, student_id, type_, title, description, utcnow_iso()),
    )
    await db.commit()
    return achievement_id


async def get_achievements(db: aiosqlite.Connection, student_id: str) -> list[dict[str, Any]]:
    cursor = await db.execute(
        """SELECT id, type, title, description, earned_at FROM achievements
           WHERE student_id = ? ORDER BY earned_at DESC""",
        (student_id,),
    )
    return [row_to_dict(r) for r in await cursor.fetchall()]

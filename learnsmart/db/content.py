"""
content.py - Queries for the Subject → Topic → Lesson tree and its questions
"""

import json
from typing import Optional, Any
import aiosqlite

from learnsmart.db.database import new_id, row_to_dict


# ══════════════════════════════════════════════════════════════════════════════
# SUBJECTS
# ══════════════════════════════════════════════════════════════════════════════

async def list_subjects(db: aiosqlite.Connection) -> list[dict[str, Any]]:
    cursor = await db.execute("SELECT id, name, description FROM subjects ORDER BY name")
    return [row_to_dict(r) for r in await cursor.fetchall()]


async def get_subject(db: aiosqlite.Connection, subject_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute("SELECT id, name, description FROM subjects WHERE id = ?", (subject_id,))
    return row_to_dict(await cursor.fetchone())


async def create_subject(db: aiosqlite.Connection, name: str, description: str = "") -> str:
    subject_id = new_id()
    await db.execute(
        "INSERT INTO subjects (id, name, description) VALUES (?, ?, ?)",
        (subject_id, name.strip(), description.strip()),
    )
    await db.commit()
    return subject_id


async def update_subject(db: aiosqlite.Connection, subject_id: str, name: str, description: str = "") -> bool:
    cursor = await db.execute(
        "UPDATE subjects SET name = ?, description = ? WHERE id = ?",
        (name.strip(), description.strip(), subject_id),
    )
    await db.commit()
    return cursor.rowcount > 0


async def delete_subject(db: aiosqlite.Connection, subject_id: str) -> bool:
    cursor = await db.execute("DELETE FROM subjects WHERE id = ?", (subject_id,))
    await db.commit()
    return cursor.rowcount > 0


# ══════════════════════════════════════════════════════════════════════════════
# TOPICS
# ══════════════════════════════════════════════════════════════════════════════

async def list_topics(db: aiosqlite.Connection, subject_id: str) -> list[dict[str, Any]]:
    cursor = await db.execute(
        """SELECT id, subject_id, name, description, "order" FROM topics
           WHERE subject_id = ? ORDER BY "order" """,
        (subject_id,),
    )
    return [row_to_dict(r) for r in await cursor.fetchall()]


async def get_topic(db: aiosqlite.Connection, topic_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute(
        'SELECT id, subject_id, name, description, "order" FROM topics WHERE id = ?',
        (topic_id,),
    )
    return row_to_dict(await cursor.fetchone())


async def create_topic(
    db: aiosqlite.Connection, subject_id: str, name: str, description: str = "", order: int = 0
) -> str:
    topic_id = new_id()
    await db.execute(
        'INSERT INTO topics (id, subject_id, name, description, "order") VALUES (?, ?, ?, ?, ?)',
        (topic_id, subject_id, name.strip(), description.strip(), order),
    )
    await db.commit()
    return topic_id


async def update_topic(
    db: aiosqlite.Connection, topic_id: str, name: str, description: str = "", order: int = 0
) -> bool:
    cursor = await db.execute(
        'UPDATE topics SET name = ?, description = ?, "order" = ? WHERE id = ?',
        (name.strip(), description.strip(), order, topic_id),
    )
    await db.commit()
    return cursor.rowcount > 0


async def delete_topic(db: aiosqlite.Connection, topic_id: str) -> bool:
    cursor = await db.execute("DELETE FROM topics WHERE id = ?", (topic_id,))
    await db.commit()
    return cursor.rowcount > 0


# ══════════════════════════════════════════════════════════════════════════════
# LESSONS
# ══════════════════════════════════════════════════════════════════════════════

async def list_lessons(db: aiosqlite.Connection, topic_id: str) -> list[dict[str, Any]]:
    """Lesson summaries (no content bodies) for one topic, in order."""
    cursor = await db.execute(
        """SELECT id, topic_id, title, content_type, "order", duration_minutes FROM lessons
           WHERE topic_id = ? ORDER BY "order" """,
        (topic_id,),
    )
    return [row_to_dict(r) for r in await cursor.fetchall()]


async def get_lesson(db: aiosqlite.Connection, lesson_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute(
        """SELECT id, topic_id, title, content_type, content_markdown, content_url,
                  "order", duration_minutes
           FROM lessons WHERE id = ?""",
        (lesson_id,),
    )
    return row_to_dict(await cursor.fetchone())


async def order_taken(
    db: aiosqlite.Connection, topic_id: str, order: int, exclude_lesson_id: Optional[str] = None
) -> bool:
    cursor = await db.execute(
        'SELECT id FROM lessons WHERE topic_id = ? AND "order" = ?',
        (topic_id, order),
    )
    row = await cursor.fetchone()
    return row is not None and row["id"] != exclude_lesson_id


async def create_lesson(
    db: aiosqlite.Connection,
    *,
    topic_id: str,
    title: str,
    content_type: str,
    content_markdown: Optional[str],
    content_url: Optional[str],
    order: int,
    duration_minutes: Optional[int] = None,
) -> str:
    lesson_id = new_id()
    await db.execute(
        """INSERT INTO lessons (id, topic_id, title, content_type, content_markdown, content_url,
                                "order", duration_minutes)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (lesson_id, topic_id, title.strip(), content_type, content_markdown, content_url, order, duration_minutes),
    )
    await db.commit()
    return lesson_id


async def update_lesson(
    db: aiosqlite.Connection,
    lesson_id: str,
    *,
    topic_id: str,
    title: str,
    content_type: str,
    content_markdown: Optional[str],
    content_url: Optional[str],
    order: int,
    duration_minutes: Optional[int] = None,
) -> bool:
    cursor = await db.execute(
        """UPDATE lessons SET topic_id = ?, title = ?, content_type = ?, content_markdown = ?,
                              content_url = ?, "order" = ?, duration_minutes = ?
           WHERE id = ?""",
        (topic_id, title.strip(), content_type, content_markdown, content_url, order, duration_minutes, lesson_id),
    )
    await db.commit()
    return cursor.rowcount > 0


async def delete_lesson(db: aiosqlite.Connection, lesson_id: str) -> bool:
    cursor = await db.execute("DELETE FROM lessons WHERE id = ?", (lesson_id,))
    await db.commit()
    return cursor.rowcount > 0


# ══════════════════════════════════════════════════════════════════════════════
# QUESTIONS
# ══════════════════════════════════════════════════════════════════════════════

_QUESTION_JSON_FIELDS = ["options", "standard_codes"]
_SCOPE_COLUMNS = {"subject": "subject_id", "topic": "topic_id", "lesson": "lesson_id"}


async def list_questions(db: aiosqlite.Connection, scope: str, scope_id: str) -> list[dict[str, Any]]:
    """Questions attached to a subject, topic or lesson, easiest first."""
    column = _SCOPE_COLUMNS[scope]
    cursor = await db.execute(
        f"SELECT * FROM questions WHERE {column} = ? ORDER BY difficulty, created_at",
        (scope_id,),
    )
    return [row_to_dict(r, parse_json_fields=_QUESTION_JSON_FIELDS) for r in await cursor.fetchall()]


async def get_question(db: aiosqlite.Connection, question_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM questions WHERE id = ?", (question_id,))
    return row_to_dict(await cursor.fetchone(), parse_json_fields=_QUESTION_JSON_FIELDS)


async def save_question(db: aiosqlite.Connection, fields: dict[str, Any], question_id: Optional[str] = None) -> str:
    """Insert a question, or overwrite every column of an existing one."""
    values = (
        fields.get("subject_id"),
        fields.get("topic_id"),
        fields.get("lesson_id"),
        fields["question_text"],
        fields["question_type"],
        json.dumps(fields.get("options") or []),
        fields.get("correct_option_index"),
        fields.get("correct_answer_text"),
        fields.get("explanation"),
        fields.get("difficulty", 1),
        fields.get("grade_level", ""),
        json.dumps(fields.get("standard_codes") or []),
    )
    if question_id is None:
        question_id = new_id()
        await db.execute(
            """INSERT INTO questions (subject_id, topic_id, lesson_id, question_text, question_type,
                                      options, correct_option_index, correct_answer_text, explanation,
                                      difficulty, grade_level, standard_codes, id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            values + (question_id,),
        )
    else:
        await db.execute(
            """UPDATE questions SET subject_id = ?, topic_id = ?, lesson_id = ?, question_text = ?,
                                    question_type = ?, options = ?, correct_option_index = ?,
                                    correct_answer_text = ?, explanation = ?, difficulty = ?,
                                    grade_level = ?, standard_codes = ?
               WHERE id = ?""",
            values + (question_id,),
        )
    await db.commit()
    return question_id


async def delete_question(db: aiosqlite.Connection, question_id: str) -> bool:
    cursor = await db.execute("DELETE FROM questions WHERE id = ?", (question_id,))
    await db.commit()
    return cursor.rowcount > 0

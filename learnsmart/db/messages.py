"""
messages.py - Queries for parent/teacher message threads
"""

from typing import Optional, Any
import aiosqlite

from learnsmart.db.database import new_id, utcnow_iso, row_to_dict

MESSAGE_COLUMNS = "id, parent_id, teacher_id, sender_id, content, created_at"


async def list_thread(
    db: aiosqlite.Connection, parent_id: str, teacher_id: str, since: Optional[str] = None
) -> list[dict[str, Any]]:
    """Messages of one thread, oldest first; only newer than ``since`` when given."""
    if since:
        cursor = await db.execute(
            f"""SELECT {MESSAGE_COLUMNS} FROM messages
                WHERE parent_id = ? AND teacher_id = ? AND created_at > ?
                ORDER BY created_at""",
            (parent_id, teacher_id, since),
        )
    else:
        cursor = await db.execute(
            f"""SELECT {MESSAGE_COLUMNS} FROM messages
                WHERE parent_id = ? AND teacher_id = ?
                ORDER BY created_at""",
            (parent_id, teacher_id),
        )
    return [row_to_dict(r) for r in await cursor.fetchall()]


async def create_message(
    db: aiosqlite.Connection, parent_id: str, teacher_id: str, sender_id: str, content: str
) -> dict[str, Any]:
    message = {
        "id": new_id(),
        "parent_id": parent_id,
        "teacher_id": teacher_id,
        "sender_id": sender_id,
        "content": content,
        "created_at": utcnow_iso(),
    }
    await db.execute(
        f"INSERT INTO messages ({MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
        tuple(message.values()),
    )
    await db.commit()
    return message

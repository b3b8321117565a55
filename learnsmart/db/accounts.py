"""
accounts.py - Queries for users, role records (students, parents) and subscriptions
"""

import json
from typing import Optional, Any
import aiosqlite

from learnsmart.db.database import new_id, utcnow_iso, row_to_dict

USER_COLUMNS = "id, email, role, first_name, last_name, grade, created_at"


# ══════════════════════════════════════════════════════════════════════════════
# USERS
# ══════════════════════════════════════════════════════════════════════════════

async def create_user(
    db: aiosqlite.Connection,
    *,
    email: str,
    password_hash: Optional[str],
    role: str,
    first_name: str,
    last_name: str,
    grade: Optional[str] = None,
) -> str:
    """Insert a user profile and its role record. Returns the new user id."""
    user_id = new_id()
    await db.execute(
        """INSERT INTO users (id, email, password_hash, role, first_name, last_name, grade)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (user_id, email.lower(), password_hash, role, first_name, last_name, grade if role == "student" else None),
    )
    if role == "student":
        await db.execute(
            "INSERT INTO students (id, user_id, grade) VALUES (?, ?, ?)",
            (new_id(), user_id, grade or "K"),
        )
    elif role == "parent":
        await db.execute(
            "INSERT INTO parents (id, user_id, children) VALUES (?, ?, '[]')",
            (new_id(), user_id),
        )
    await db.commit()
    return user_id


async def get_user(db: aiosqlite.Connection, user_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,))
    return row_to_dict(await cursor.fetchone())


async def get_user_with_password(db: aiosqlite.Connection, email: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute(
        f"SELECT {USER_COLUMNS}, password_hash FROM users WHERE email = ?",
        (email.lower(),),
    )
    return row_to_dict(await cursor.fetchone())


async def email_taken(db: aiosqlite.Connection, email: str) -> bool:
    cursor = await db.execute("SELECT id FROM users WHERE email = ?", (email.lower(),))
    return await cursor.fetchone() is not None


async def list_users(db: aiosqlite.Connection) -> list[dict[str, Any]]:
    cursor = await db.execute(f"SELECT {USER_COLUMNS} FROM users ORDER BY created_at, email")
    return [row_to_dict(r) for r in await cursor.fetchall()]


async def update_user_role(db: aiosqlite.Connection, user_id: str, role: str) -> bool:
    """Change a user's role, creating the matching role record when missing."""
    cursor = await db.execute(
        "UPDATE users SET role = ?, updated_at = ? WHERE id = ?",
        (role, utcnow_iso(), user_id),
    )
    if cursor.rowcount == 0:
        return False
    if role == "student":
        await db.execute(
            """INSERT INTO students (id, user_id) VALUES (?, ?)
               ON CONFLICT (user_id) DO NOTHING""",
            (new_id(), user_id),
        )
    elif role == "parent":
        await db.execute(
            """INSERT INTO parents (id, user_id, children) VALUES (?, ?, '[]')
               ON CONFLICT (user_id) DO NOTHING""",
            (new_id(), user_id),
        )
    await db.commit()
    return True


# ══════════════════════════════════════════════════════════════════════════════
# STUDENTS
# ══════════════════════════════════════════════════════════════════════════════

async def get_student(db: aiosqlite.Connection, user_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM students WHERE user_id = ?", (user_id,))
    return row_to_dict(await cursor.fetchone())


# ══════════════════════════════════════════════════════════════════════════════
# PARENTS
# ══════════════════════════════════════════════════════════════════════════════

async def get_parent(db: aiosqlite.Connection, user_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM parents WHERE user_id = ?", (user_id,))
    return row_to_dict(await cursor.fetchone(), parse_json_fields=["children"])


async def add_child(db: aiosqlite.Connection, parent_user_id: str, child_user_id: str) -> list[str]:
    """Link a student to a parent, appending to the ordered children list."""
    parent = await get_parent(db, parent_user_id)
    children = list(parent["children"]) if parent else []
    if child_user_id not in children:
        children.append(child_user_id)
    await db.execute(
        "UPDATE parents SET children = ?, updated_at = ? WHERE user_id = ?",
        (json.dumps(children), utcnow_iso(), parent_user_id),
    )
    await db.execute(
        "UPDATE students SET parent_id = ?, updated_at = ? WHERE user_id = ?",
        (parent_user_id, utcnow_iso(), child_user_id),
    )
    await db.commit()
    return children


async def is_parent_of(db: aiosqlite.Connection, parent_user_id: str, student_user_id: str) -> bool:
    parent = await get_parent(db, parent_user_id)
    return bool(parent) and student_user_id in (parent["children"] or [])


async def set_subscription_status(
    db: aiosqlite.Connection,
    parent_user_id: str,
    status: str,
    customer_id: Optional[str] = None,
) -> None:
    if customer_id:
        await db.execute(
            "UPDATE parents SET subscription_status = ?, customer_id = ?, updated_at = ? WHERE user_id = ?",
            (status, customer_id, utcnow_iso(), parent_user_id),
        )
    else:
        await db.execute(
            "UPDATE parents SET subscription_status = ?, updated_at = ? WHERE user_id = ?",
            (status, utcnow_iso(), parent_user_id),
        )
    await db.commit()


# ══════════════════════════════════════════════════════════════════════════════
# SUBSCRIPTIONS
# ══════════════════════════════════════════════════════════════════════════════

async def upsert_subscription(
    db: aiosqlite.Connection,
    *,
    subscription_id: str,
    parent_id: str,
    plan_type: Optional[str],
    price: Optional[int],
    status: Optional[str],
    active: bool,
) -> None:
    """Insert or overwrite the subscription keyed by the provider's id."""
    await db.execute(
        """INSERT INTO subscriptions (id, parent_id, plan_type, price, status, active, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT (id) DO UPDATE SET
               parent_id = excluded.parent_id,
               plan_type = excluded.plan_type,
               price = excluded.price,
               status = excluded.status,
               active = excluded.active,
               updated_at = excluded.updated_at""",
        (subscription_id, parent_id, plan_type, price, status, int(active), utcnow_iso()),
    )
    await db.commit()


async def deactivate_subscription(db: aiosqlite.Connection, subscription_id: str) -> None:
    await db.execute(
        "UPDATE subscriptions SET active = 0, status = 'cancelled', updated_at = ? WHERE id = ?",
        (utcnow_iso(), subscription_id),
    )
    await db.commit()


async def get_subscription(db: aiosqlite.Connection, subscription_id: str) -> Optional[dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))
    return row_to_dict(await cursor.fetchone())

"""Parent/teacher messaging: thread access rules and the server-sent-events feed."""

import asyncio
import json
import logging
from typing import AsyncIterator, Protocol

from learnsmart.db import messages as messages_db
from learnsmart.db.database import open_db
from learnsmart.models.user import SessionContext

logger = logging.getLogger(__name__)


class _Disconnectable(Protocol):
    async def is_disconnected(self) -> bool: ...


def can_access_thread(user: SessionContext, parent_id: str, teacher_id: str) -> bool:
    """Only the thread's parent, its teacher, or an admin may read or post."""
    return user.is_admin or user.user_id in (parent_id, teacher_id)


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def message_events(
    request: _Disconnectable,
    parent_id: str,
    teacher_id: str,
    poll_seconds: float,
) -> AsyncIterator[str]:
    """Poll the thread and yield each message once, until the client goes away."""
    last_seen = None
    while not await request.is_disconnected():
        async with open_db() as db:
            new_messages = await messages_db.list_thread(db, parent_id, teacher_id, since=last_seen)
        for message in new_messages:
            yield sse_event(message)
            last_seen = message["created_at"]
        await asyncio.sleep(poll_seconds)
    logger.debug("Message stream for %s/%s closed by client", parent_id, teacher_id)

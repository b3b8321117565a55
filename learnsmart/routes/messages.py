from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from learnsmart.config import settings
from learnsmart.db.database import get_db
from learnsmart.routes.auth import get_current_user
from learnsmart.services.messaging import can_access_thread, message_events

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.get("/stream")
async def stream_messages(parent_id: str, teacher_id: str, request: Request, db=Depends(get_db)):
    """Server-sent events for one thread; each message is sent once, oldest first."""
    user = await get_current_user(request, db)
    if not can_access_thread(user, parent_id, teacher_id):
        raise HTTPException(status_code=403, detail="Access denied")
    return StreamingResponse(
        message_events(request, parent_id, teacher_id, settings.message_poll_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )

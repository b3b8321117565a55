"""
Endpoints under /functions: AI tutor, AI grading, assessment saving,
messaging and Lemon Squeezy billing.

Everything except the payment webhook needs a bearer token. Ids carried in
a payload (userId, student_id, parent_id) must be the caller's own, a child
of the calling parent, or anyone for admins. Upstream AI and billing
failures propagate as AIServiceError / BillingError and are rendered as 500
by the application's exception handlers.
"""

import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from learnsmart.config import settings
from learnsmart.db.database import get_db
from learnsmart.db import accounts as accounts_db
from learnsmart.db import learning as learning_db
from learnsmart.db import messages as messages_db
from learnsmart.models.functions import GradeRequest, MessageIn, PortalRequest, TutorRequest
from learnsmart.models.learning import AssessmentSave
from learnsmart.models.user import Role
from learnsmart.routes.auth import get_current_user, require_acting_for
from learnsmart.services import billing
from learnsmart.services.grading import grade_answer
from learnsmart.services.messaging import can_access_thread
from learnsmart.services.tutor import tutor_reply

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["functions"])


@router.post("/ai-tutor")
async def ai_tutor(body: TutorRequest, request: Request, db=Depends(get_db)):
    if body.userId:
        await require_acting_for(request, body.userId, db)
    else:
        await get_current_user(request, db)
    content = await tutor_reply([m.model_dump() for m in body.messages])
    return {"message": {"role": "assistant", "content": content}}


@router.post("/ai-assessment")
async def ai_assessment(body: GradeRequest, request: Request, db=Depends(get_db)):
    await get_current_user(request, db)
    return await grade_answer(body.question, body.answer, body.type)


@router.post("/save-assessment")
async def save_assessment(body: AssessmentSave, request: Request, db=Depends(get_db)):
    """Store one graded (or ungraded) answer and move the student's learning path."""
    await require_acting_for(request, body.student_id, db)
    if await accounts_db.get_student(db, body.student_id) is None:
        raise HTTPException(status_code=400, detail="Unknown student")

    await learning_db.create_assessment(
        db,
        body.student_id,
        assessment_type="question",
        question_id=body.question_id,
        score=body.score,
        feedback=body.feedback,
        completed=body.score is not None,
    )
    await learning_db.upsert_learning_path(db, body.student_id, body.current_topic, body.progress)
    return {"success": True}


# ── Messaging ───────────────────────────────────────────────────────

@router.get("/messages")
async def list_messages(parent_id: str, teacher_id: str, request: Request, response: Response, db=Depends(get_db)):
    user = await get_current_user(request, db)
    if not can_access_thread(user, parent_id, teacher_id):
        raise HTTPException(status_code=403, detail="Access denied")
    response.headers["X-Poll-Interval"] = f"{settings.message_poll_seconds:g}"
    return await messages_db.list_thread(db, parent_id, teacher_id)


@router.post("/messages")
async def post_message(body: MessageIn, request: Request, db=Depends(get_db)):
    user = await get_current_user(request, db)
    if not can_access_thread(user, body.parent_id, body.teacher_id):
        raise HTTPException(status_code=403, detail="Access denied")
    content = body.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content is required")
    return await messages_db.create_message(db, body.parent_id, body.teacher_id, user.user_id, content)


# ── Billing ─────────────────────────────────────────────────────────

@router.post("/lemon-squeezy-webhook")
async def lemon_squeezy_webhook(request: Request, db=Depends(get_db)):
    raw = await request.body()
    secret = settings.lemon_squeezy_webhook_secret
    if secret and not billing.verify_signature(raw, request.headers.get("X-Signature"), secret):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = billing.parse_webhook(json.loads(raw or b"null"))
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    await billing.apply_webhook(db, event)
    return {"received": True}


@router.post("/lemon-squeezy-customer-portal")
async def lemon_squeezy_customer_portal(body: PortalRequest, request: Request, db=Depends(get_db)):
    user = await get_current_user(request, db)
    if not user.is_admin:
        parent = await accounts_db.get_parent(db, user.user_id) if user.role == Role.PARENT else None
        if not parent or parent.get("customer_id") != body.customerId:
            raise HTTPException(status_code=403, detail="Access denied")
    url = await billing.create_portal_url(body.customerId)
    return {"url": url}

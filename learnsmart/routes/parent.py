import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, field_validator
from learnsmart.db.database import get_db
from learnsmart.db import accounts as accounts_db
from learnsmart.db import learning as learning_db
from learnsmart.models.user import Role
from learnsmart.routes.auth import MIN_PASSWORD_LENGTH, hash_password, require_role
from learnsmart.services.learning_path import build_learning_path

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/parent", tags=["parent"])

require_parent = require_role(Role.PARENT)


class ChildRequest(BaseModel):
    email: EmailStr
    password: str
    first_name: str = ""
    last_name: str = ""
    grade: Optional[str] = "K"

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


async def _children(db, parent_user_id: str) -> list[dict]:
    parent = await accounts_db.get_parent(db, parent_user_id)
    children = []
    for child_id in (parent or {}).get("children") or []:
        child = await accounts_db.get_user(db, child_id)
        if child:
            children.append(child)
    return children


@router.get("/subscription")
async def subscription(request: Request, db=Depends(get_db)):
    user = await require_parent(request, db)
    parent = await accounts_db.get_parent(db, user.user_id) or {}
    status = parent.get("subscription_status") or "free"
    return {
        "subscription_status": status,
        "is_premium": status == "paid",
        "customer_id": parent.get("customer_id"),
    }


@router.get("/children")
async def list_children(request: Request, db=Depends(get_db)):
    user = await require_parent(request, db)
    return {"children": await _children(db, user.user_id)}


@router.post("/children")
async def add_child(body: ChildRequest, request: Request, db=Depends(get_db)):
    """Create a student account for a child and link it to the calling parent."""
    user = await require_parent(request, db)
    if await accounts_db.email_taken(db, body.email):
        raise HTTPException(status_code=409, detail="Email already registered")

    child_id = await accounts_db.create_user(
        db,
        email=body.email,
        password_hash=hash_password(body.password),
        role=Role.STUDENT.value,
        first_name=body.first_name.strip(),
        last_name=body.last_name.strip(),
        grade=(body.grade or "K").strip(),
    )
    children = await accounts_db.add_child(db, user.user_id, child_id)
    logger.info("Parent %s added child %s", user.user_id, child_id)
    return {"child": await accounts_db.get_user(db, child_id), "children": children}


@router.get("/dashboard")
async def parent_dashboard(request: Request, db=Depends(get_db)):
    user = await require_parent(request, db)
    children = []
    for child in await _children(db, user.user_id):
        children.append({
            "child": child,
            "learning_path": await build_learning_path(db, child["id"]),
            "achievements": await learning_db.get_achievements(db, child["id"]),
            "completed_lessons": await learning_db.count_completed_lessons(db, child["id"]),
        })
    return {"children": children}

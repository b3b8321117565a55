import logging
import bcrypt
import jwt
import aiosqlite
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, field_validator
from learnsmart.db.database import get_db
from learnsmart.db import accounts as accounts_db
from learnsmart.config import settings
from learnsmart.models.user import Role, SessionContext
from learnsmart.services.sessions import sessions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

TOKEN_ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(hours=72)
MIN_PASSWORD_LENGTH = 8


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    first_name: str = ""
    last_name: str = ""
    # Admin accounts are seeded, never self-registered
    role: Literal["student", "parent"] = "student"
    grade: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


def create_token(user_id: str, email: str, role: str) -> str:
    issued = datetime.now(timezone.utc)
    claims = {"sub": user_id, "email": email, "role": role, "iat": issued, "exp": issued + TOKEN_LIFETIME}
    return jwt.encode(claims, settings.jwt_secret, algorithm=TOKEN_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _bearer_token(request: Request) -> str:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    return token.strip()


async def get_current_user(request: Request, db: aiosqlite.Connection) -> SessionContext:
    """Resolve the bearer token to a SessionContext for the stored user."""
    claims = decode_token(_bearer_token(request))
    user = await accounts_db.get_user(db, claims["sub"])
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return SessionContext(
        user_id=user["id"],
        email=user["email"],
        role=user["role"],
        first_name=user["first_name"],
        last_name=user["last_name"],
        grade=user["grade"],
    )


# ── Convenience helpers for route-level auth ────────────────────────

def require_role(*allowed_roles: Role):
    """Return a dependency that checks the user has one of the allowed roles.

    Usage in a route:
        user = await require_role(Role.PARENT)(request, db)
    """
    async def _check(request: Request, db: aiosqlite.Connection) -> SessionContext:
        user = await get_current_user(request, db)
        if user.role not in allowed_roles:
            raise HTTPException(
                status_code=403,
                detail=f"Access denied. Required role: {', '.join(r.value for r in allowed_roles)}",
            )
        return user
    return _check


async def require_acting_for(request: Request, target_user_id: str, db: aiosqlite.Connection) -> SessionContext:
    """Get current user and verify they may act for ``target_user_id``.

    Users act for themselves, parents for their own children, admins for anyone.
    """
    user = await get_current_user(request, db)
    if user.is_admin or user.user_id == target_user_id:
        return user
    if user.role == Role.PARENT and await accounts_db.is_parent_of(db, user.user_id, target_user_id):
        return user
    raise HTTPException(status_code=403, detail="Access denied")


PUBLIC_USER_FIELDS = ("id", "email", "role", "first_name", "last_name", "grade")


def _auth_response(user: dict) -> dict:
    return {
        "token": create_token(user["id"], user["email"], user["role"]),
        "user": {field: user.get(field) for field in PUBLIC_USER_FIELDS},
    }


async def seed_admin_account(db: aiosqlite.Connection) -> None:
    """Create the ADMIN_EMAIL account at startup when it doesn't exist yet."""
    if not settings.admin_email:
        return
    existing = await accounts_db.get_user_with_password(db, settings.admin_email)
    if existing:
        if existing["role"] != Role.ADMIN.value:
            logger.warning("ADMIN_EMAIL %s belongs to a %s account; leaving it unchanged",
                           settings.admin_email, existing["role"])
        return
    await accounts_db.create_user(
        db,
        email=settings.admin_email,
        password_hash=hash_password(settings.admin_password),
        role=Role.ADMIN.value,
        first_name="Admin",
        last_name="",
    )
    logger.info("Seeded admin account %s", settings.admin_email)


@router.post("/register")
async def register(body: RegisterRequest, db=Depends(get_db)):
    """Public registration for students and parents.

    Students get a students row (grade defaults to K); parents get a parents
    row with an empty children list.
    """
    if await accounts_db.email_taken(db, body.email):
        raise HTTPException(status_code=409, detail="Email already registered")

    grade = (body.grade or "K").strip() if body.role == Role.STUDENT.value else None
    user_id = await accounts_db.create_user(
        db,
        email=body.email,
        password_hash=hash_password(body.password),
        role=body.role,
        first_name=body.first_name.strip(),
        last_name=body.last_name.strip(),
        grade=grade,
    )
    logger.info("Registered %s %s", body.role, user_id)
    return _auth_response(await accounts_db.get_user(db, user_id))


@router.post("/login")
async def login(body: LoginRequest, db=Depends(get_db)):
    user = await accounts_db.get_user_with_password(db, body.email)
    if not user or not user["password_hash"] or not verify_password(body.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _auth_response(user)


@router.get("/me")
async def get_me(request: Request, db=Depends(get_db)):
    user = await get_current_user(request, db)
    return user.model_dump(mode="json")


@router.post("/logout")
async def logout(request: Request, db=Depends(get_db)):
    """Tokens are stateless; logout drops the caller's open assessment and quiz."""
    user = await get_current_user(request, db)
    sessions.teardown(user.user_id)
    return {"success": True}

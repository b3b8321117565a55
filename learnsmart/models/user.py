from enum import Enum
from typing import Optional
from pydantic import BaseModel


class Role(str, Enum):
    STUDENT = "student"
    PARENT = "parent"
    ADMIN = "admin"


class UserProfile(BaseModel):
    id: str
    email: str
    role: Role
    first_name: str = ""
    last_name: str = ""
    grade: Optional[str] = None
    created_at: Optional[str] = None


class StudentRecord(BaseModel):
    id: str
    user_id: str
    parent_id: Optional[str] = None
    grade: str = "K"
    points: int = 0
    streak_days: int = 0
    weekly_goal: int = 20


class ParentRecord(BaseModel):
    id: str
    user_id: str
    children: list[str] = []
    subscription_status: str = "free"
    customer_id: Optional[str] = None


class SessionContext(BaseModel):
    """Who is calling. Built per request from the bearer token."""

    user_id: str
    email: str
    role: Role
    first_name: str = ""
    last_name: str = ""
    grade: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

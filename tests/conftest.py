"""Shared fixtures: a throwaway SQLite database per test and a TestClient over the app.

The TestClient is not entered as a context manager, so the lifespan (Alembic
upgrade, admin seeding) does not run; the schema is loaded straight from
schema.sql instead.
"""

import asyncio
import os
import sqlite3
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

os.environ["JWT_SECRET"] = "test-secret-key-that-is-at-least-32-characters-long"
os.environ["ADMIN_EMAIL"] = ""

import pytest
from fastapi.testclient import TestClient

from learnsmart.config import settings
from learnsmart.db.database import SCHEMA_PATH, open_db
from learnsmart.db import accounts as accounts_db
from learnsmart.services.sessions import sessions


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "learnsmart_test.db"
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA_PATH.read_text())
    conn.commit()
    conn.close()
    monkeypatch.setattr(settings, "database_path", str(path))
    monkeypatch.setattr(settings, "database_url", "")
    return path


@pytest.fixture(autouse=True)
def clear_sessions():
    sessions.clear()
    yield
    sessions.clear()


@pytest.fixture
def run_db(db_path):
    """Run ``fn(db)`` against the test database and return its result."""
    def _run(fn):
        async def _go():
            async with open_db() as db:
                return await fn(db)
        return asyncio.run(_go())
    return _run


@pytest.fixture
def client(db_path, monkeypatch):
    monkeypatch.setattr(settings, "assessment_handoff_seconds", 0)
    from learnsmart.server import app
    return TestClient(app)


@pytest.fixture
def make_user(client, run_db):
    """Register (or, for admins, seed) a user and return token, headers and id."""
    counter = {"n": 0}

    def _make(role: str = "student", grade: str = "3", password: str = "password123") -> dict:
        counter["n"] += 1
        email = f"{role}{counter['n']}@example.com"
        if role == "admin":
            from learnsmart.routes.auth import hash_password

            run_db(lambda db: accounts_db.create_user(
                db, email=email, password_hash=hash_password(password), role="admin",
                first_name="Ada", last_name="Admin",
            ))
            res = client.post("/api/auth/login", json={"email": email, "password": password})
        else:
            res = client.post("/api/auth/register", json={
                "email": email,
                "password": password,
                "first_name": role.title(),
                "last_name": "Tester",
                "role": role,
                "grade": grade,
            })
        assert res.status_code == 200, res.text
        data = res.json()
        return {
            "id": data["user"]["id"],
            "email": email,
            "token": data["token"],
            "headers": {"Authorization": f"Bearer {data['token']}"},
        }

    return _make

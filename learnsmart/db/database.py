"""Connections for LearnSmart storage.

SQLite through aiosqlite is the default; setting DATABASE_URL to a
``postgresql://`` DSN switches to an asyncpg pool. Query modules only ever
see the aiosqlite surface (``execute`` returning a cursor, ``?`` params,
``commit``), so the Postgres side is a thin adapter over a pooled
connection. Ids are uuid4 hex strings minted in Python.
"""

import json
import re
import uuid
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from pathlib import Path

import aiosqlite
from alembic import command
from alembic.config import Config

from learnsmart.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

_PLACEHOLDER_RE = re.compile(r"'[^']*'|(\?)")
_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")

_pool = None


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def using_postgres() -> bool:
    return settings.database_url.startswith("postgresql://")


def to_pg_sql(sql: str) -> str:
    """Number ``?`` placeholders as ``$1..$n``, leaving quoted literals alone."""
    position = 0

    def number(match):
        nonlocal position
        if not match.group(1):
            return match.group(0)
        position += 1
        return f"${position}"

    return _PLACEHOLDER_RE.sub(number, sql)


def _as_timestamp(value):
    if not (isinstance(value, str) and _TIMESTAMP_RE.match(value)):
        return value
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class _PgCursor:

    def __init__(self, rows=(), rowcount=-1):
        self._rows = list(rows)
        self.rowcount = rowcount

    async def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    async def fetchall(self):
        rows, self._rows = self._rows, []
        return rows


class PgConnection:
    """aiosqlite-shaped wrapper around a pooled asyncpg connection."""

    def __init__(self, conn):
        self._conn = conn

    async def execute(self, sql: str, params=()):
        import asyncpg

        query = to_pg_sql(sql)
        args = tuple(params or ())
        try:
            try:
                return await self._run(query, args)
            except asyncpg.DataError:
                # TIMESTAMP columns reject ISO strings; retry with datetimes
                converted = tuple(_as_timestamp(a) for a in args)
                if converted == args:
                    raise
                return await self._run(query, converted)
        except asyncpg.IntegrityConstraintViolationError as exc:
            # Callers catch the sqlite3 class on both backends
            raise aiosqlite.IntegrityError(str(exc)) from exc

    async def _run(self, query: str, args: tuple) -> _PgCursor:
        head = query.lstrip()[:6].upper()
        if head == "SELECT" or "RETURNING" in query.upper():
            rows = await self._conn.fetch(query, *args)
            return _PgCursor(rows, len(rows))
        # Status looks like "UPDATE 2" or "INSERT 0 1"
        status = await self._conn.execute(query, *args)
        count = status.rsplit(" ", 1)[-1]
        return _PgCursor(rowcount=int(count) if count.isdigit() else -1)

    async def commit(self):
        pass


async def _pg_pool():
    global _pool
    if _pool is None:
        import asyncpg
        _pool = await asyncpg.create_pool(settings.database_url, min_size=2, max_size=10)
    return _pool


@asynccontextmanager
async def open_db():
    """Connection for code running outside a request (startup, streams)."""
    if using_postgres():
        pool = await _pg_pool()
        conn = await pool.acquire()
        try:
            yield PgConnection(conn)
        finally:
            await pool.release(conn)
        return

    db = await aiosqlite.connect(settings.database_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    try:
        yield db
    finally:
        await db.close()


async def get_db() -> AsyncGenerator:
    """FastAPI dependency: one connection per request."""
    async with open_db() as db:
        yield db


def _alembic_config() -> Config:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    url = settings.database_url if using_postgres() else f"sqlite:///{settings.database_path}"
    cfg.set_main_option("sqlalchemy.url", url)
    return cfg


async def init_db():
    """Bring the schema up to date. Runs once at startup."""
    if using_postgres():
        logger.info("Using PostgreSQL at %s", settings.database_url.split("@")[-1])
    else:
        Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
        logger.info("Using SQLite at %s", settings.database_path)
    command.upgrade(_alembic_config(), "head")


async def close_db():
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def row_to_dict(row, parse_json_fields: list[str] | None = None) -> dict | None:
    """Plain dict for a row; named columns holding JSON text are decoded."""
    if row is None:
        return None

    result = {}
    for key in row.keys():
        value = row[key]
        result[key] = value.isoformat() if isinstance(value, (datetime, date)) else value

    for field in parse_json_fields or ():
        raw = result.get(field)
        if isinstance(raw, str):
            try:
                result[field] = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Column %s holds invalid JSON; returning raw text", field)
    return result

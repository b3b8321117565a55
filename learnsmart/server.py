import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from learnsmart.config import settings
from learnsmart.db.database import init_db, close_db, open_db
from learnsmart.middleware.auth import AuthMiddleware
from learnsmart.services.ai_client import AIServiceError
from learnsmart.services.billing import BillingError

logger = logging.getLogger(__name__)

# CORS: CORS_ORIGINS is comma-separated; "*" answers every origin.
_allowed_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    from learnsmart.routes.auth import seed_admin_account
    async with open_db() as db:
        await seed_admin_account(db)
    yield
    await close_db()


app = FastAPI(title="LearnSmart", lifespan=lifespan)

# Added first so CORS wraps it and 401s still carry CORS headers
app.add_middleware(AuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials="*" not in _allowed_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Signature"],
    expose_headers=["X-Poll-Interval"],
)


# ── Error bodies: always {"error": ...} ──────────────────────────────

@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(AIServiceError)
async def ai_service_error(request: Request, exc: AIServiceError):
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(BillingError)
async def billing_error(request: Request, exc: BillingError):
    return JSONResponse(status_code=500, content={"error": str(exc)})


# Import and register routes
from learnsmart.routes.auth import router as auth_router
from learnsmart.routes.student import router as student_router
from learnsmart.routes.parent import router as parent_router
from learnsmart.routes.admin import router as admin_router
from learnsmart.routes.functions import router as functions_router
from learnsmart.routes.messages import router as messages_router

app.include_router(auth_router)
app.include_router(student_router)
app.include_router(parent_router)
app.include_router(admin_router)
app.include_router(functions_router)
app.include_router(messages_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}

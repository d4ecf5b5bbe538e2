from dotenv import load_dotenv
import os

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(BASE_DIR, ".env"))

import asyncio
import logging
import re
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from school_api.core.config import settings
from school_api.core.database import AsyncSessionLocal
from school_api.core.limiter import limiter
from school_api.core.logging_config import configure_logging
from school_api.middleware.request_logging import RequestLoggingMiddleware
from school_api.services.cleanup_service import CleanupService
from school_api.services.providers import get_device_service, get_otp_security

# ───────────────── ROUTER IMPORTS ─────────────────
from school_api.routes.auth import router as auth_router
from school_api.routes.attendance import router as attendance_router

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    cleanup = None
    task = None
    if settings.CLEANUP_INTERVAL_MINUTES > 0:
        cleanup = CleanupService(
            AsyncSessionLocal,
            get_otp_security(),
            get_device_service(),
            interval_seconds=settings.CLEANUP_INTERVAL_MINUTES * 60,
        )
        task = asyncio.create_task(cleanup.start())
    app.state.cleanup_task = task
    logger.info("School API started (env=%s)", settings.APP_ENV)
    try:
        yield
    finally:
        if cleanup and task:
            await cleanup.stop()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


app = FastAPI(
    title="School Management API",
    description="Attendance, OTP authentication and tenant-scoped access for schools",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# ───────── SAFE VALIDATION HANDLER ─────────

def _sanitize(obj):
    if isinstance(obj, (bytes, bytearray)):
        return f"<bytes:{len(obj)}>"
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(v) for v in obj]
    if isinstance(obj, Exception):
        return str(obj)
    return obj


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": _sanitize(exc.errors())},
    )

# ───────── STORAGE ERRORS → TAXONOMY ─────────

_UNIQUE_FIELDS_RE = [
    re.compile(r"UNIQUE constraint failed: (?P<fields>[\w., ]+)"),   # sqlite
    re.compile(r"Key \((?P<fields>[^)]+)\)=\(.*\) already exists"),  # postgres
]


def _violated_fields(message: str) -> str | None:
    for pattern in _UNIQUE_FIELDS_RE:
        m = pattern.search(message)
        if m:
            cols = [c.strip().split(".")[-1] for c in m.group("fields").split(",")]
            return ", ".join(c for c in cols if c)
    return None


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    message = str(exc.orig)
    lowered = message.lower()
    if "unique" in lowered or "duplicate key" in lowered:
        fields = _violated_fields(message)
        detail = f"A record with this {fields} already exists" if fields else "This record already exists"
        return JSONResponse(status_code=HTTP_409_CONFLICT, content={"detail": detail})
    if "foreign key" in lowered:
        return JSONResponse(status_code=HTTP_400_BAD_REQUEST, content={"detail": "Invalid reference to related record"})

    logger.error("Integrity error on %s %s: %s", request.method, request.url.path, message)
    return JSONResponse(status_code=HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Database operation failed"})


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Database operation failed"})

# ───────────────── RATE LIMIT / CORS / LOGGING ─────────────────

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-School-Id"],
)
app.add_middleware(RequestLoggingMiddleware)

# ───────────────── ROUTES ─────────────────

app.include_router(auth_router, prefix="/api")
app.include_router(attendance_router, prefix="/api")

# ───────────────── HEALTH ─────────────────

@app.get("/", tags=["Health"])
async def root():
    return {
        "status": "ok",
        "app": "School Management API",
        "env": settings.APP_ENV,
    }


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "healthy"}

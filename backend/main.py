# main.py: Interview Rooms API
# Features:
# - Request IDs and timing
# - Security headers
# - Structured RoomError responses
# - Health check with DB verification
# - Room and guest routers

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from database import close_db, engine, get_db_context, init_db
from errors import RoomError, ValidationError
from room_core import ROOM_STORE_BACKEND
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("interview-rooms")

VERSION = "1.0.0"


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("JWT_SECRET_KEY is not set or shorter than 32 characters")

    if ROOM_STORE_BACKEND == "memory" and os.getenv("ENVIRONMENT") == "production":
        warnings.append("ROOM_STORE_BACKEND=memory loses all rooms on restart")
    elif ROOM_STORE_BACKEND == "file":
        logger.info(f"File record store at {os.getenv('ROOM_DATA_DIR', './data/rooms')}")

    if not os.getenv("APP_URL"):
        warnings.append("APP_URL not set, invitation links point at localhost")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Interview Rooms API...")
    await init_db()
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app, engine if ROOM_STORE_BACKEND == "sql" else None)
    yield
    logger.info("Shutting down Interview Rooms API...")
    await close_db()


app = FastAPI(
    title="Interview Rooms",
    description="Room, participant and guest access control for live interview sessions",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://localhost:8080"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


# ============================================================
# MIDDLEWARE: Request IDs + Timing
# ============================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    # Guests run camera and microphone checks before joining
    response.headers["Permissions-Policy"] = "camera=(self), microphone=(self), geolocation=()"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

@app.exception_handler(RoomError)
async def room_error_handler(request: Request, exc: RoomError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")

    body = exc.to_dict()
    body["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and parameters are reported like any other ROOM-REQ-001"""
    fields = [
        {"loc": [str(part) for part in err.get("loc", [])], "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]
    return await room_error_handler(request, ValidationError("Invalid request", fields=fields))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import rooms, guest

app.include_router(rooms.router)
app.include_router(guest.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

async def _database_status() -> str:
    if ROOM_STORE_BACKEND != "sql":
        return "unused"
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        return f"error: {str(e)[:100]}"
    return "connected"


@app.get("/health")
async def health_check():
    """Liveness plus a round trip to the record store database when one is configured"""
    db_status = await _database_status()
    return {
        "status": "degraded" if db_status.startswith("error") else "healthy",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
        "store_backend": ROOM_STORE_BACKEND,
    }


@app.get("/")
async def root():
    return {
        "name": "Interview Rooms",
        "version": VERSION,
        "description": "Room, participant and guest access control for live interview sessions",
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from consulting_slots.api.routes import availability, bookings, slots
from consulting_slots.api.schemas.slots import ErrorResponse
from consulting_slots.core.config import _ENV_FILE, settings
from consulting_slots.core.db import async_session_maker, init_db
from consulting_slots.core.errors import ErrorKind, SlotError
from consulting_slots.services.booking_service import BookingEngine
from consulting_slots.services.email_service import register_email_notifications
from consulting_slots.services.events import EventBus

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


def build_booking_engine() -> BookingEngine:
    bus = EventBus()
    register_email_notifications(bus)
    return BookingEngine(
        async_session_maker,
        events=bus,
        cancellation_lead=timedelta(minutes=settings.cancellation_min_lead_minutes),
        timeout_seconds=settings.booking_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    logger.info(
        "Cancellation lead time: %d minutes, booking timeout: %ss",
        settings.cancellation_min_lead_minutes, settings.booking_timeout_seconds,
    )
    if not settings.email_enabled:
        logger.warning("Email notifications: NOT configured (SMTP settings missing)")
    if settings.auto_create_tables:
        await init_db()
    yield


app = FastAPI(
    title="Consulting Slots API",
    description="Scheduling and booking core for consulting slots",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)
app.state.booking_engine = build_booking_engine()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(slots.router, prefix="/api/v1")
app.include_router(bookings.router, prefix="/api/v1")
app.include_router(availability.router, prefix="/api/v1")


@app.exception_handler(SlotError)
async def slot_error_handler(request: Request, exc: SlotError) -> JSONResponse:
    """Domain failures become {success: false, message} with a stable status per kind."""
    if exc.kind != ErrorKind.NOT_FOUND:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.kind.value)
    body = ErrorResponse(message=exc.message, conflicting_slots=exc.conflicting_slots or None)
    content = body.model_dump(mode="json")
    if body.conflicting_slots is None:
        content.pop("conflicting_slots")
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"success": False, "message": "Storage unavailable"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return the actual error in JSON so the UI can show something useful."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": f"{type(exc).__name__}: {str(exc)}"},
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}

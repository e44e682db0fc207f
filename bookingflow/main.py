import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

from . import models  # noqa: F401 - register tables with Base
from .config import ALLOWED_ORIGINS, WATCHDOG_ENABLED, WATCHDOG_INTERVAL_SECONDS
from .database import Base, SessionLocal, engine
from .domain.bookings.router import router as bookings_router
from .domain.notifications.router import router as notifications_router
from .domain.reputation.router import router as reputation_router
from .errors import BookingFlowError, TransientStoreFailure
from .services.deadline_watchdog import DeadlineWatchdog, WatchdogScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    scheduler = None
    if WATCHDOG_ENABLED:
        watchdog = DeadlineWatchdog(SessionLocal)
        scheduler = WatchdogScheduler(watchdog.scan_and_expire, WATCHDOG_INTERVAL_SECONDS)
        scheduler.start()
    else:
        logger.info("In-process deadline watchdog disabled (expect the arq worker to run it)")
    app.state.watchdog_scheduler = scheduler

    yield

    logger.info("Application shutting down...")
    if scheduler is not None:
        await scheduler.stop()


app = FastAPI(title="Bookingflow API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(BookingFlowError)
async def booking_flow_exception_handler(request: Request, exc: BookingFlowError):
    """Render workflow failures as {detail, kind} with the kind's status code"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def store_unavailable_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} - store unavailable: {exc}")
    failure = TransientStoreFailure("Booking store temporarily unavailable")
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors()), "kind": "validation_error"})


# Log CORS configuration for debugging
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(bookings_router)
app.include_router(reputation_router)
app.include_router(notifications_router)


@app.get("/")
def root():
    return {"message": "Bookingflow API is running"}


@app.get("/health")
def health():
    scheduler = getattr(app.state, "watchdog_scheduler", None)
    return {"status": "healthy", "watchdog_running": bool(scheduler and scheduler.running)}

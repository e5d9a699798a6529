"""
Live Classroom Backend
FastAPI Application Entry Point

On startup:
1. Configures logging
2. Creates the session-room hub and the broadcaster services publish through
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import engine
from app.errors import ClassroomError
from app.realtime.hub import HubBroadcaster, RoomHub
from app.api.colleges import router as colleges_router
from app.api.users import router as users_router
from app.api.sessions import router as sessions_router
from app.api.realtime import router as realtime_router
from app.api.attendance import router as attendance_router
from app.api.polls import router as polls_router
from app.api.chat import router as chat_router
from app.api.notifications import router as notifications_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("live-classroom")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: room hub on startup, engine disposal on shutdown."""
    logger.info("Starting %s...", settings.APP_NAME)
    logger.info("Skipping create_all; ensure Alembic migrations are applied (alembic upgrade head)")

    app.state.hub = RoomHub()
    if getattr(app.state, "broadcaster", None) is None:
        app.state.broadcaster = HubBroadcaster(app.state.hub)

    logger.info("%s is ready! API docs: http://localhost:8000/docs", settings.APP_NAME)

    yield

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Live classroom sessions: lifecycle, attendance monitoring, polls, chat and real-time rooms",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ClassroomError)
async def classroom_error_handler(request: Request, exc: ClassroomError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Register API routes
app.include_router(colleges_router)
app.include_router(users_router)
app.include_router(realtime_router)
app.include_router(sessions_router)
app.include_router(attendance_router)
app.include_router(polls_router)
app.include_router(chat_router)
app.include_router(notifications_router)


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "online",
        "app": settings.APP_NAME,
        "version": "1.0.0",
    }


@app.get("/api/v1/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected",
        "app": settings.APP_NAME,
        "version": "1.0.0",
    }

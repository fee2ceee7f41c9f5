"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.allocation_controller import router as allocation_router
from backend.controllers.course_controller import router as course_router
from backend.controllers.feedback_controller import router as feedback_router
from backend.controllers.live_controller import router as live_router
from backend.controllers.round_controller import router as round_router
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationService
from backend.services.broadcast_service import LiveUpdateBroadcaster
from backend.services.course_service import CourseService
from backend.services.feedback_service import FeedbackService
from backend.services.notification_service import NotificationService
from backend.services.round_service import RoundService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    The broadcaster and notifier are handed to the allocation engine here
    rather than reached through globals.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    repository = DataRepository(settings)
    broadcaster = LiveUpdateBroadcaster(queue_size=settings.live_update_queue_size)
    notification_service = NotificationService(settings=settings)

    allocation_service = AllocationService(
        repository=repository,
        settings=settings,
        notifier=notification_service,
        broadcaster=broadcaster,
    )
    round_service = RoundService(repository=repository, settings=settings)
    course_service = CourseService(repository=repository, settings=settings)
    feedback_service = FeedbackService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield
        logger.info("Shutdown: draining pending email notices")
        app.state.notification_service.shutdown(wait=True)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(allocation_router)
    app.include_router(round_router)
    app.include_router(course_router)
    app.include_router(feedback_router)
    app.include_router(live_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.broadcaster = broadcaster
    app.state.notification_service = notification_service
    app.state.allocation_service = allocation_service
    app.state.round_service = round_service
    app.state.course_service = course_service
    app.state.feedback_service = feedback_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before seeding; seeding skips a database that
    already holds students.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo departments, courses and students")
        repository.seed_demo_data()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()

"""
app.py — FastAPI application factory and startup lifecycle.

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

from backend.controllers.booking_controller import router as booking_router
from backend.controllers.dashboard_controller import router as dashboard_router
from backend.controllers.resource_controller import router as resource_router
from backend.domain.constraints import SchedulingConfig, validate_scheduling_config
from backend.repository.data_repository import DataRepository
from backend.services.approval_service import ApprovalService
from backend.services.auth_service import AuthService
from backend.services.catalog_service import CatalogService
from backend.services.conflict_index import ConflictIndex
from backend.services.dashboard_service import DashboardService
from backend.services.notification_service import NotificationService
from backend.services.scheduling_service import BookingScheduler
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    The conflict index is created here and handed to the scheduler and the
    approval service explicitly; nothing reaches it through a module global.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite document store) ---
    repository = DataRepository(settings)

    # --- Scheduling core ---
    conflict_index = ConflictIndex()
    catalog_service = CatalogService(repository=repository, settings=settings, index=conflict_index)
    notification_service = NotificationService(repository=repository)
    scheduler = BookingScheduler(
        index=conflict_index,
        repository=repository,
        settings=settings,
        resource_check=catalog_service.ensure_bookable,
    )
    approval_service = ApprovalService(
        index=conflict_index,
        repository=repository,
        notifier=notification_service,
        settings=settings,
    )

    # --- Collaborators ---
    auth_service = AuthService(repository=repository, settings=settings)
    dashboard_service = DashboardService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(dashboard_router)
    app.include_router(resource_router)
    app.include_router(booking_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.conflict_index = conflict_index
    app.state.catalog_service = catalog_service
    app.state.notification_service = notification_service
    app.state.scheduler = scheduler
    app.state.approval_service = approval_service
    app.state.auth_service = auth_service
    app.state.dashboard_service = dashboard_service

    return app


def startup(app: FastAPI) -> None:
    """
    Startup sequence. Safe to re-run against an existing database.

    Order matters:
      1. Configuration is validated before anything touches storage.
      2. Schema must exist before seeding.
      3. The conflict index is rebuilt from persisted active occurrences last,
         once every resource is known.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository
    conflict_index: ConflictIndex = app.state.conflict_index

    validate_scheduling_config(
        SchedulingConfig(
            recurrence_max_occurrences=settings.recurrence_max_occurrences,
            utilization_window_days=settings.utilization_window_days,
            bookable_hours_per_day=settings.bookable_hours_per_day,
            recent_bookings_limit=settings.recent_bookings_limit,
        )
    )

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo users and resources (skipped if catalog not empty)")
        repository.seed_demo_data()

    logger.info("Startup: loading active occurrences into the conflict index")
    loaded = 0
    for resource in repository.list_resources():
        if conflict_index.snapshot(resource.resource_id):
            continue
        loaded += conflict_index.load(
            resource.resource_id,
            repository.list_active_occurrences(resource.resource_id),
        )

    logger.info("Startup complete — %s active occurrence(s) indexed", loaded)


# Module-level app object for uvicorn
app = create_app()

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
from datetime import date
from typing import Optional

from fastapi import FastAPI

from backend.controllers.analytics_controller import router as analytics_router
from backend.controllers.auth_controller import router as auth_router
from backend.controllers.booking_controller import router as booking_router
from backend.controllers.envelope import install_error_envelope
from backend.controllers.simulation_controller import router as simulation_router
from backend.controllers.simulation_controller import waiting_router
from backend.controllers.slot_controller import router as slot_router
from backend.controllers.temple_controller import router as temple_router
from backend.repository.data_repository import DataRepository
from backend.services.alert_engine import AlertEngine
from backend.services.analytics_service import AnalyticsService
from backend.services.auth_service import AuthService
from backend.services.booking_service import BookingService
from backend.services.broadcast_service import BroadcastHub
from backend.services.capacity_ledger import CapacityLedger
from backend.services.qr_service import QrCodeService
from backend.services.simulation_service import CrowdSimulationService
from backend.services.slot_service import SlotService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    No global singletons: every dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Repository (single SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services (business logic, no direct SQL) ---
    broadcast_hub = BroadcastHub(queue_size=settings.broadcast_queue_size)
    ledger = CapacityLedger(repository)
    booking_service = BookingService(
        repository=repository,
        ledger=ledger,
        qr_service=QrCodeService(),
        broadcast_hub=broadcast_hub,
        settings=settings,
    )
    slot_service = SlotService(repository=repository, settings=settings)
    simulation_service = CrowdSimulationService(
        repository=repository,
        alert_engine=AlertEngine(repository),
        broadcast_hub=broadcast_hub,
        settings=settings,
    )
    analytics_service = AnalyticsService(repository=repository, settings=settings)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    install_error_envelope(app)

    # --- Routers ---
    app.include_router(auth_router)
    app.include_router(temple_router)
    app.include_router(slot_router)
    app.include_router(booking_router)
    app.include_router(simulation_router)
    app.include_router(waiting_router)
    app.include_router(analytics_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.broadcast_hub = broadcast_hub
    app.state.booking_service = booking_service
    app.state.slot_service = slot_service
    app.state.simulation_service = simulation_service
    app.state.analytics_service = analytics_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before the demo temples and slots are seeded;
    seeding is skipped when temples already exist.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: seeding demo temples and slots (skipped if Temples table not empty)")
    created = repository.seed_demo_data_if_empty(date.today())
    logger.info("Startup: seeded %s slots", created)

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()

"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.domain.models import Identity, Role
from backend.services.analytics_service import AnalyticsService
from backend.services.auth_service import AuthService, InvalidSessionError
from backend.services.booking_service import BookingService
from backend.services.broadcast_service import BroadcastHub
from backend.services.simulation_service import CrowdSimulationService
from backend.services.slot_service import SlotService
from backend.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)

_OPEN_ADMIN = Identity(user_id="admin", role=Role.ADMIN, name="Administrator")


def _require_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_booking_service(request: Request) -> BookingService:
    return _require_state(request, "booking_service", "Booking service")


def get_slot_service(request: Request) -> SlotService:
    return _require_state(request, "slot_service", "Slot service")


def get_simulation_service(request: Request) -> CrowdSimulationService:
    return _require_state(request, "simulation_service", "Simulation service")


def get_analytics_service(request: Request) -> AnalyticsService:
    return _require_state(request, "analytics_service", "Analytics service")


def get_broadcast_hub(request: Request) -> BroadcastHub:
    return _require_state(request, "broadcast_hub", "Broadcast hub")


async def get_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Identity:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.resolve_bearer_token(credentials.credentials)
    except InvalidSessionError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Identity:
    """Admin gate. Without ADMIN_TOKEN configured, admin routes stay open."""
    if not auth_service.auth_enabled:
        return _OPEN_ADMIN
    identity = await get_identity(credentials, auth_service)
    if not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin privileges are required",
        )
    return identity

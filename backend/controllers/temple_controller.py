"""Controller layer for temple listing and the live status stream."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from backend.controllers.dependencies import get_broadcast_hub, get_simulation_service
from backend.controllers.envelope import ApiResponse, to_http_exception
from backend.domain.errors import TempleServiceError
from backend.domain.models import Temple
from backend.services.broadcast_service import BroadcastHub
from backend.services.simulation_service import CrowdSimulationService
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/temples", tags=["temples"])


class TempleResponse(BaseModel):
    id: int
    name: str
    city: str
    latitude: float
    longitude: float
    max_visitors_per_slot: int
    open_time: str
    close_time: str
    slot_duration_minutes: int
    current_occupancy: int
    occupancy_percentage: int
    is_open: bool

    @classmethod
    def from_temple(cls, temple: Temple) -> "TempleResponse":
        return cls(
            id=temple.temple_id,
            name=temple.name,
            city=temple.city,
            latitude=temple.latitude,
            longitude=temple.longitude,
            max_visitors_per_slot=temple.max_visitors_per_slot,
            open_time=temple.open_time,
            close_time=temple.close_time,
            slot_duration_minutes=temple.slot_duration_minutes,
            current_occupancy=temple.current_occupancy,
            occupancy_percentage=temple.occupancy_percentage,
            is_open=temple.is_open,
        )


class TempleListResponse(BaseModel):
    temples: list[TempleResponse]
    count: int


@router.get("", response_model=ApiResponse[TempleListResponse], status_code=status.HTTP_200_OK)
async def list_temples(
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> ApiResponse[TempleListResponse]:
    try:
        temples = await run_in_threadpool(service.list_temples)
        return ApiResponse(
            data=TempleListResponse(
                temples=[TempleResponse.from_temple(temple) for temple in temples],
                count=len(temples),
            )
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected failure while listing temples")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error while fetching temples",
        ) from exc


@router.get("/{temple_id}", response_model=ApiResponse[TempleResponse], status_code=status.HTTP_200_OK)
async def get_temple(
    temple_id: int,
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> ApiResponse[TempleResponse]:
    try:
        temple = await run_in_threadpool(service.get_temple, temple_id)
        return ApiResponse(data=TempleResponse.from_temple(temple))
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected failure while fetching temple %s", temple_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error while fetching temple",
        ) from exc


async def _event_stream(
    request: Request,
    hub: BroadcastHub,
    temple_id: int,
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    subscription = hub.subscribe(temple_id)
    try:
        yield ": connected\n\n"
        while not await request.is_disconnected():
            event = await subscription.next_event(timeout=keepalive_seconds)
            if event is None:
                yield ": ping\n\n"
            else:
                yield event.to_sse()
    finally:
        hub.unsubscribe(subscription)


@router.get("/{temple_id}/stream")
async def stream_temple(
    temple_id: int,
    request: Request,
    hub: BroadcastHub = Depends(get_broadcast_hub),
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> StreamingResponse:
    """Server-sent events for one temple: `status`, `slot_status`, `alert`, `alert_resolved`."""
    try:
        await run_in_threadpool(service.get_temple, temple_id)
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc

    settings = getattr(request.app.state, "settings", None) or get_settings()
    return StreamingResponse(
        _event_stream(request, hub, temple_id, settings.broadcast_keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )

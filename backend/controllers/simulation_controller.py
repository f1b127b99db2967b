"""HTTP controller layer for crowd simulation, alerts and wait estimates."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from backend.controllers.dependencies import get_simulation_service, require_admin
from backend.controllers.envelope import ApiResponse, to_http_exception
from backend.domain.errors import TempleServiceError
from backend.domain.models import (
    Alert,
    AlertSeverity,
    AlertType,
    AreaOccupancy,
    HourlyCrowdRecord,
    Temple,
    WeatherImpact,
)
from backend.services.crowd_estimator import estimate_queue_wait_minutes
from backend.services.simulation_service import (
    AreaReading,
    CrowdSimulationService,
    CurrentStatus,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/simulation", tags=["simulation"])
waiting_router = APIRouter(prefix="/waiting-times", tags=["simulation"])


class AreaRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    capacity: int = Field(ge=1)
    current_occupancy: int = Field(ge=0)
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)


class WeatherRequest(BaseModel):
    condition: str
    temperature: float
    impact_level: str = "none"
    expected_reduction: float = Field(default=0.0, ge=0.0, le=100.0)


class SimulationUpdateRequest(BaseModel):
    hour: int = Field(ge=0, le=23)
    actual_visitors: int = Field(ge=0)
    expected_visitors: Optional[int] = Field(default=None, ge=0)
    areas: Optional[list[AreaRequest]] = None
    weather_impact: Optional[WeatherRequest] = None


class SyntheticRequest(BaseModel):
    hour: Optional[int] = Field(default=None, ge=0, le=23)


class AlertRequest(BaseModel):
    type: AlertType
    severity: AlertSeverity
    message: str = Field(min_length=1, max_length=500)
    affected_areas: list[str] = Field(default_factory=list)


class WaitEstimateRequest(BaseModel):
    current_visitors: float = 0
    capacity_per_slot: float = 0
    slot_duration_minutes: Optional[float] = None
    lanes: Optional[float] = None


class AreaResponse(BaseModel):
    name: str
    capacity: int
    current_occupancy: int
    density_level: str
    occupancy_percentage: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_area(cls, area: AreaOccupancy) -> "AreaResponse":
        return cls(
            name=area.name,
            capacity=area.capacity,
            current_occupancy=area.current_occupancy,
            density_level=area.density_level.value,
            occupancy_percentage=area.occupancy_percentage,
            latitude=area.latitude,
            longitude=area.longitude,
        )


class HourlyResponse(BaseModel):
    hour: int
    expected_visitors: int
    actual_visitors: int
    crowd_density: str
    wait_time: int
    areas: list[AreaResponse]

    @classmethod
    def from_record(cls, record: HourlyCrowdRecord) -> "HourlyResponse":
        return cls(
            hour=record.hour,
            expected_visitors=record.expected_visitors,
            actual_visitors=record.actual_visitors,
            crowd_density=record.crowd_density.value,
            wait_time=record.wait_time,
            areas=[AreaResponse.from_area(area) for area in record.areas],
        )


class AlertResponse(BaseModel):
    id: int
    type: str
    severity: str
    message: str
    affected_areas: list[str]
    is_active: bool
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertResponse":
        return cls(
            id=alert.alert_id,
            type=alert.alert_type.value,
            severity=alert.severity.value,
            message=alert.message,
            affected_areas=list(alert.affected_areas),
            is_active=alert.is_active,
            created_at=alert.created_at,
            resolved_at=alert.resolved_at,
        )


class TempleSummary(BaseModel):
    id: int
    name: str
    city: str
    latitude: float
    longitude: float
    max_visitors_per_slot: int

    @classmethod
    def from_temple(cls, temple: Temple) -> "TempleSummary":
        return cls(
            id=temple.temple_id,
            name=temple.name,
            city=temple.city,
            latitude=temple.latitude,
            longitude=temple.longitude,
            max_visitors_per_slot=temple.max_visitors_per_slot,
        )


class CurrentStatusResponse(BaseModel):
    hour: int
    crowd_density: str
    expected_visitors: int
    actual_visitors: int
    wait_time: int

    @classmethod
    def from_status(cls, current: CurrentStatus) -> "CurrentStatusResponse":
        return cls(
            hour=current.hour,
            crowd_density=current.crowd_density.value,
            expected_visitors=current.expected_visitors,
            actual_visitors=current.actual_visitors,
            wait_time=current.wait_time,
        )


class SimulationResponse(BaseModel):
    temple: TempleSummary
    date: str
    current_status: CurrentStatusResponse
    hourly_data: list[HourlyResponse]
    peak_hours: list[dict[str, Any]]
    alerts: list[AlertResponse]
    weather_impact: Optional[dict[str, Any]] = None
    areas: list[AreaResponse]


class SimulationUpdateResponse(BaseModel):
    current_status: CurrentStatusResponse
    alerts_created: list[AlertResponse]


class HeatmapResponse(BaseModel):
    temple: TempleSummary
    hour: int
    areas: list[AreaResponse]


class WaitEstimateResponse(BaseModel):
    minutes: Optional[int] = None
    level: str


def _server_error(action: str) -> HTTPException:
    logger.exception("Unexpected simulation failure while %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Server error while {action}",
    )


@router.get(
    "/{temple_id}",
    response_model=ApiResponse[SimulationResponse],
    status_code=status.HTTP_200_OK,
)
async def get_simulation(
    temple_id: int,
    simulation_date: Optional[date] = Query(default=None, alias="date"),
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> ApiResponse[SimulationResponse]:
    try:
        view = await run_in_threadpool(service.get_simulation, temple_id, simulation_date)
        simulation = view.simulation
        return ApiResponse(
            data=SimulationResponse(
                temple=TempleSummary.from_temple(view.temple),
                date=simulation.date.isoformat(),
                current_status=CurrentStatusResponse.from_status(view.current_status),
                hourly_data=[
                    HourlyResponse.from_record(simulation.hourly[hour])
                    for hour in sorted(simulation.hourly)
                ],
                peak_hours=[
                    {
                        "start_hour": peak.start_hour,
                        "end_hour": peak.end_hour,
                        "expected_crowd": peak.expected_crowd,
                        "reason": peak.reason,
                    }
                    for peak in simulation.peak_hours
                ],
                alerts=[AlertResponse.from_alert(alert) for alert in view.active_alerts],
                weather_impact=simulation.weather.to_dict() if simulation.weather else None,
                areas=[AreaResponse.from_area(area) for area in view.areas],
            )
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("fetching simulation data") from exc


@router.post(
    "/{temple_id}/update",
    response_model=ApiResponse[SimulationUpdateResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def update_simulation(
    temple_id: int,
    payload: SimulationUpdateRequest,
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> ApiResponse[SimulationUpdateResponse]:
    areas = (
        [
            AreaReading(
                name=area.name.strip(),
                capacity=area.capacity,
                current_occupancy=area.current_occupancy,
                latitude=area.latitude,
                longitude=area.longitude,
            )
            for area in payload.areas
        ]
        if payload.areas is not None
        else None
    )
    weather = (
        WeatherImpact(
            condition=payload.weather_impact.condition,
            temperature=payload.weather_impact.temperature,
            impact_level=payload.weather_impact.impact_level,
            expected_reduction=payload.weather_impact.expected_reduction,
        )
        if payload.weather_impact is not None
        else None
    )
    try:
        result = await run_in_threadpool(
            service.ingest_update,
            temple_id,
            payload.hour,
            payload.actual_visitors,
            payload.expected_visitors,
            areas,
            weather,
        )
        return ApiResponse(
            message="Simulation updated successfully",
            data=SimulationUpdateResponse(
                current_status=CurrentStatusResponse.from_status(result.current_status),
                alerts_created=[AlertResponse.from_alert(alert) for alert in result.alerts_created],
            ),
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("updating simulation") from exc


@router.post(
    "/{temple_id}/synthetic",
    response_model=ApiResponse[SimulationUpdateResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def synthetic_update(
    temple_id: int,
    payload: SyntheticRequest = SyntheticRequest(),
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> ApiResponse[SimulationUpdateResponse]:
    try:
        result = await run_in_threadpool(service.ingest_synthetic, temple_id, payload.hour)
        return ApiResponse(
            message="Synthetic occupancy ingested",
            data=SimulationUpdateResponse(
                current_status=CurrentStatusResponse.from_status(result.current_status),
                alerts_created=[AlertResponse.from_alert(alert) for alert in result.alerts_created],
            ),
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("generating synthetic occupancy") from exc


@router.post(
    "/{temple_id}/alert",
    response_model=ApiResponse[AlertResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def create_alert(
    temple_id: int,
    payload: AlertRequest,
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> ApiResponse[AlertResponse]:
    try:
        alert = await run_in_threadpool(
            service.add_alert,
            temple_id,
            payload.type,
            payload.severity,
            payload.message,
            payload.affected_areas,
        )
        return ApiResponse(message="Alert created successfully", data=AlertResponse.from_alert(alert))
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("creating alert") from exc


@router.put(
    "/{temple_id}/alert/{alert_id}/resolve",
    response_model=ApiResponse[AlertResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def resolve_alert(
    temple_id: int,
    alert_id: int,
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> ApiResponse[AlertResponse]:
    try:
        alert = await run_in_threadpool(service.resolve_alert, temple_id, alert_id)
        return ApiResponse(message="Alert resolved successfully", data=AlertResponse.from_alert(alert))
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("resolving alert") from exc


@router.get(
    "/{temple_id}/heatmap",
    response_model=ApiResponse[HeatmapResponse],
    status_code=status.HTTP_200_OK,
)
async def get_heatmap(
    temple_id: int,
    hour: Optional[int] = Query(default=None, ge=0, le=23),
    service: CrowdSimulationService = Depends(get_simulation_service),
) -> ApiResponse[HeatmapResponse]:
    try:
        view = await run_in_threadpool(service.heatmap, temple_id, hour)
        return ApiResponse(
            data=HeatmapResponse(
                temple=TempleSummary.from_temple(view.temple),
                hour=view.hour,
                areas=[AreaResponse.from_area(area) for area in view.areas],
            )
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("fetching heatmap data") from exc


@waiting_router.post(
    "/estimate",
    response_model=ApiResponse[WaitEstimateResponse],
    status_code=status.HTTP_200_OK,
)
async def estimate_wait(payload: WaitEstimateRequest) -> ApiResponse[WaitEstimateResponse]:
    """Queue-model estimate; pure computation, no store access."""
    estimate = estimate_queue_wait_minutes(
        payload.current_visitors,
        payload.capacity_per_slot,
        payload.slot_duration_minutes,
        payload.lanes,
    )
    return ApiResponse(data=WaitEstimateResponse(minutes=estimate.minutes, level=estimate.level))

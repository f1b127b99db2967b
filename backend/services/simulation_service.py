"""Per-day crowd simulations: baselines, occupancy ingestion, alerts and heatmaps.

Every write to a temple-day runs inside one immediate transaction, so the
hourly record, the temple occupancy and any alerts raised from that reading
become visible together. Broadcasts happen only after the commit.
"""

from __future__ import annotations

import math
import sqlite3
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Optional, Sequence

import numpy as np

from backend.domain.constraints import (
    validate_hour,
    validate_visitor_counts,
    validate_weather,
)
from backend.domain.errors import NotFoundError, TransientError, ValidationError
from backend.domain.models import (
    Alert,
    AlertSeverity,
    AlertType,
    AreaOccupancy,
    CrowdSimulation,
    Density,
    HourlyCrowdRecord,
    PeakHour,
    Temple,
    WeatherImpact,
    round_half_up,
)
from backend.repository.data_repository import DataRepository
from backend.services.alert_engine import AlertEngine
from backend.services.broadcast_service import BroadcastHub
from backend.services.crowd_estimator import (
    classify_area_density,
    classify_density,
    estimate_wait_minutes,
    overall_density,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger, log_event


logger = get_logger(__name__)

MAIN_AREA = "Main Temple"
QUEUE_AREA = "Queue Area"


@dataclass(frozen=True)
class AreaReading:
    name: str
    capacity: int
    current_occupancy: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class CurrentStatus:
    hour: int
    crowd_density: Density
    expected_visitors: int
    actual_visitors: int
    wait_time: int


@dataclass(frozen=True)
class SimulationView:
    temple: Temple
    simulation: CrowdSimulation
    current_status: CurrentStatus
    active_alerts: list[Alert]
    areas: tuple[AreaOccupancy, ...]


@dataclass(frozen=True)
class IngestResult:
    temple: Temple
    record: HourlyCrowdRecord
    current_status: CurrentStatus
    alerts_created: list[Alert]


@dataclass(frozen=True)
class HeatmapView:
    temple: Temple
    hour: int
    areas: tuple[AreaOccupancy, ...]


def _in_peak_window(hour: int, windows: Sequence[tuple[int, int, str]]) -> bool:
    return any(start <= hour <= end for start, end, _ in windows)


def build_baseline(
    temple: Temple,
    settings: Settings,
) -> tuple[list[HourlyCrowdRecord], list[PeakHour], WeatherImpact]:
    """Default day shape used the first time a temple-day is requested."""
    capacity = temple.max_visitors_per_slot
    base_visitors = math.floor(capacity * settings.simulation_baseline_ratio)
    offset = settings.simulation_area_coordinate_offset

    records = []
    for hour in range(settings.simulation_open_hour, settings.simulation_close_hour + 1):
        multiplier = (
            settings.simulation_peak_multiplier
            if _in_peak_window(hour, settings.simulation_peak_windows)
            else 1
        )
        records.append(
            HourlyCrowdRecord(
                hour=hour,
                expected_visitors=base_visitors * multiplier,
                areas=(
                    AreaOccupancy(
                        name=MAIN_AREA,
                        capacity=capacity,
                        latitude=temple.latitude,
                        longitude=temple.longitude,
                    ),
                    AreaOccupancy(
                        name=QUEUE_AREA,
                        capacity=math.floor(capacity * settings.simulation_queue_area_ratio),
                        latitude=temple.latitude + offset,
                        longitude=temple.longitude + offset,
                    ),
                ),
            )
        )

    peak_hours = [
        PeakHour(
            start_hour=start,
            end_hour=end,
            expected_crowd=capacity * settings.simulation_peak_multiplier,
            reason=reason,
        )
        for start, end, reason in settings.simulation_peak_windows
    ]
    weather = WeatherImpact(
        condition=settings.simulation_default_weather,
        temperature=settings.simulation_default_temperature,
    )
    return records, peak_hours, weather


def _current_status(
    temple: Temple,
    record: Optional[HourlyCrowdRecord],
    hour: int,
) -> CurrentStatus:
    if record is None:
        return CurrentStatus(
            hour=hour,
            crowd_density=Density.LOW,
            expected_visitors=0,
            actual_visitors=0,
            wait_time=0,
        )
    return CurrentStatus(
        hour=hour,
        crowd_density=overall_density(record),
        expected_visitors=record.expected_visitors,
        actual_visitors=record.actual_visitors,
        wait_time=estimate_wait_minutes(record.actual_visitors, temple.max_visitors_per_slot),
    )


class CrowdSimulationService:
    """Feeds occupancy readings through the estimator and alert engine."""

    def __init__(
        self,
        repository: DataRepository,
        alert_engine: AlertEngine,
        broadcast_hub: Optional[BroadcastHub] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._alert_engine = alert_engine
        self._broadcast_hub = broadcast_hub
        self._settings = settings or get_settings()
        self._clock = clock or datetime.now
        self._rng = np.random.default_rng(self._settings.synthetic_random_seed)
        self._rng_lock = threading.Lock()

    def _require_temple(
        self,
        temple_id: int,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Temple:
        temple = self._repository.get_temple(temple_id, connection)
        if temple is None:
            raise NotFoundError("Temple not found")
        return temple

    def _ensure_simulation(
        self,
        connection: sqlite3.Connection,
        temple: Temple,
        simulation_date: date,
    ) -> CrowdSimulation:
        simulation = self._repository.get_simulation(temple.temple_id, simulation_date, connection)
        if simulation is not None:
            return simulation
        records, peak_hours, weather = build_baseline(temple, self._settings)
        self._repository.create_simulation(
            connection,
            temple.temple_id,
            simulation_date,
            records,
            peak_hours,
            weather,
        )
        log_event(
            logger,
            "Baseline simulation created",
            temple_id=temple.temple_id,
            date=simulation_date.isoformat(),
            hours=len(records),
        )
        simulation = self._repository.get_simulation(temple.temple_id, simulation_date, connection)
        if simulation is None:
            raise TransientError("Simulation could not be created")
        return simulation

    def list_temples(self) -> list[Temple]:
        return self._repository.list_temples()

    def get_temple(self, temple_id: int) -> Temple:
        return self._require_temple(temple_id)

    def get_simulation(self, temple_id: int, simulation_date: Optional[date] = None) -> SimulationView:
        """Return the day's simulation, creating the baseline on first access."""
        now = self._clock()
        target_date = simulation_date or now.date()
        with self._repository.transaction() as conn:
            temple = self._require_temple(temple_id, conn)
            simulation = self._ensure_simulation(conn, temple, target_date)

        record = simulation.record_for(now.hour)
        return SimulationView(
            temple=temple,
            simulation=simulation,
            current_status=_current_status(temple, record, now.hour),
            active_alerts=simulation.active_alerts(),
            areas=record.areas if record else (),
        )

    def ingest_update(
        self,
        temple_id: int,
        hour: int,
        actual_visitors: int,
        expected_visitors: Optional[int] = None,
        areas: Optional[Sequence[AreaReading]] = None,
        weather: Optional[WeatherImpact] = None,
    ) -> IngestResult:
        """Record today's occupancy for one hour and raise overcrowding alerts."""
        validate_hour(hour)
        validate_visitor_counts(expected_visitors, actual_visitors)
        if weather is not None:
            validate_weather(weather.condition, weather.impact_level)
        for area in areas or ():
            if area.capacity < 1 or area.current_occupancy < 0:
                raise ValidationError(f"area '{area.name}' needs capacity >= 1 and occupancy >= 0")

        now = self._clock()
        with self._repository.transaction() as conn:
            temple = self._require_temple(temple_id, conn)
            simulation = self._ensure_simulation(conn, temple, now.date())
            existing = simulation.record_for(hour)

            expected = (
                expected_visitors
                if expected_visitors is not None
                else (existing.expected_visitors if existing else 0)
            )
            if areas is not None:
                area_records = tuple(
                    AreaOccupancy(
                        name=area.name,
                        capacity=area.capacity,
                        current_occupancy=area.current_occupancy,
                        density_level=classify_area_density(area.current_occupancy, area.capacity),
                        latitude=area.latitude,
                        longitude=area.longitude,
                    )
                    for area in areas
                )
            else:
                area_records = existing.areas if existing else ()

            record = HourlyCrowdRecord(
                hour=hour,
                expected_visitors=expected,
                actual_visitors=actual_visitors,
                crowd_density=classify_density(actual_visitors, expected),
                wait_time=estimate_wait_minutes(actual_visitors, temple.max_visitors_per_slot),
                areas=area_records,
            )
            self._repository.upsert_hourly_record(conn, simulation.simulation_id, record)
            if weather is not None:
                self._repository.update_weather(conn, simulation.simulation_id, weather)
            self._repository.update_temple_occupancy(temple_id, actual_visitors, now, conn)
            alerts_created = self._alert_engine.evaluate_and_apply(
                conn,
                simulation.simulation_id,
                temple.max_visitors_per_slot,
                record,
            )

        temple = replace(temple, current_occupancy=actual_visitors)
        status = _current_status(temple, record, hour)
        log_event(
            logger,
            "Occupancy ingested",
            temple_id=temple_id,
            hour=hour,
            actual=actual_visitors,
            expected=expected,
            density=record.crowd_density.value,
            alerts=len(alerts_created),
        )
        self._publish_status(temple, status, now)
        for alert in alerts_created:
            self._publish_alert(temple_id, "alert", alert)
        return IngestResult(
            temple=temple,
            record=record,
            current_status=status,
            alerts_created=alerts_created,
        )

    def ingest_synthetic(self, temple_id: int, hour: Optional[int] = None) -> IngestResult:
        """Generate a noisy reading around the hour's baseline and ingest it."""
        now = self._clock()
        target_hour = now.hour if hour is None else hour
        validate_hour(target_hour)
        view = self.get_simulation(temple_id, now.date())
        temple = view.temple
        record = view.simulation.record_for(target_hour)
        expected = record.expected_visitors if record else 0
        if expected == 0:
            expected = math.floor(
                temple.max_visitors_per_slot * self._settings.simulation_baseline_ratio
            )

        with self._rng_lock:
            noise = float(self._rng.normal(1.0, self._settings.synthetic_noise_sd))
        factor = max(0.0, noise)
        actual = int(round(expected * factor))
        main_share = int(math.floor(actual * self._settings.synthetic_area_split))
        offset = self._settings.simulation_area_coordinate_offset
        areas = [
            AreaReading(
                name=MAIN_AREA,
                capacity=temple.max_visitors_per_slot,
                current_occupancy=main_share,
                latitude=temple.latitude,
                longitude=temple.longitude,
            ),
            AreaReading(
                name=QUEUE_AREA,
                capacity=max(
                    1,
                    math.floor(temple.max_visitors_per_slot * self._settings.simulation_queue_area_ratio),
                ),
                current_occupancy=actual - main_share,
                latitude=temple.latitude + offset,
                longitude=temple.longitude + offset,
            ),
        ]
        return self.ingest_update(
            temple_id,
            target_hour,
            actual,
            expected_visitors=expected,
            areas=areas,
        )

    def add_alert(
        self,
        temple_id: int,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        affected_areas: Sequence[str] = (),
    ) -> Alert:
        now = self._clock()
        with self._repository.transaction() as conn:
            temple = self._require_temple(temple_id, conn)
            simulation = self._ensure_simulation(conn, temple, now.date())
            alert = self._alert_engine.add_alert(
                conn,
                simulation.simulation_id,
                alert_type,
                severity,
                message,
                affected_areas,
            )
        self._publish_alert(temple_id, "alert", alert)
        return alert

    def resolve_alert(self, temple_id: int, alert_id: int) -> Alert:
        self._require_temple(temple_id)
        alert = self._alert_engine.resolve(temple_id, alert_id)
        self._publish_alert(temple_id, "alert_resolved", alert)
        return alert

    def heatmap(self, temple_id: int, hour: Optional[int] = None) -> HeatmapView:
        """Per-area occupancy for one hour of today's simulation; empty if none exists yet."""
        now = self._clock()
        target_hour = now.hour if hour is None else hour
        validate_hour(target_hour)
        temple = self._require_temple(temple_id)
        simulation = self._repository.get_simulation(temple_id, now.date())
        record = simulation.record_for(target_hour) if simulation else None
        return HeatmapView(
            temple=temple,
            hour=target_hour,
            areas=record.areas if record else (),
        )

    def _publish_status(self, temple: Temple, status: CurrentStatus, now: datetime) -> None:
        if self._broadcast_hub is None:
            return
        self._broadcast_hub.publish(
            temple.temple_id,
            "status",
            {
                "isOpen": temple.is_open,
                "currentOccupancy": temple.current_occupancy,
                "occupancyPercentage": round_half_up(
                    temple.current_occupancy / temple.max_visitors_per_slot * 100
                ),
                "crowdLevel": status.crowd_density.value,
                "lastUpdated": now.isoformat(timespec="seconds"),
                "capacity": temple.max_visitors_per_slot,
            },
        )

    def _publish_alert(self, temple_id: int, event: str, alert: Alert) -> None:
        if self._broadcast_hub is None:
            return
        self._broadcast_hub.publish(
            temple_id,
            event,
            {
                "id": alert.alert_id,
                "type": alert.alert_type.value,
                "severity": alert.severity.value,
                "message": alert.message,
                "affectedAreas": list(alert.affected_areas),
                "isActive": alert.is_active,
                "createdAt": alert.created_at.isoformat() if alert.created_at else None,
                "resolvedAt": alert.resolved_at.isoformat() if alert.resolved_at else None,
            },
        )

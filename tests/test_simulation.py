from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, datetime

import numpy as np
import pytest

from backend.domain.errors import NotFoundError, ValidationError
from backend.domain.models import AlertSeverity, AlertType, Density, WeatherImpact
from backend.repository.data_repository import DataRepository
from backend.services.alert_engine import AlertEngine
from backend.services.broadcast_service import BroadcastHub
from backend.services.simulation_service import (
    MAIN_AREA,
    QUEUE_AREA,
    AreaReading,
    CrowdSimulationService,
    build_baseline,
)
from backend.utils.config import get_settings


FIXED_NOW = datetime(2026, 3, 1, 9, 30)


def _build_test_settings(tmp_path, filename: str):
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        synthetic_random_seed=123,
        database_timeout_seconds=30.0,
    )


def _build_service(tmp_path, broadcast_hub: BroadcastHub | None = None):
    settings = _build_test_settings(tmp_path, "simulation.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    temple_id = repository.create_temple("Crowd Temple", "Testville", 22.0, 70.0, 200)
    clock = lambda: FIXED_NOW  # noqa: E731
    service = CrowdSimulationService(
        repository=repository,
        alert_engine=AlertEngine(repository, clock=clock),
        broadcast_hub=broadcast_hub,
        settings=settings,
        clock=clock,
    )
    return repository, service, temple_id, settings


def test_baseline_doubles_expected_visitors_in_peak_windows(tmp_path):
    repository, _, temple_id, settings = _build_service(tmp_path)
    temple = repository.get_temple(temple_id)

    records, peak_hours, weather = build_baseline(temple, settings)
    expected = {record.hour: record.expected_visitors for record in records}

    assert sorted(expected) == list(range(6, 23))
    assert expected[7] == 60
    assert expected[8] == expected[10] == 120
    assert expected[11] == 60
    assert expected[18] == expected[20] == 120
    assert [(peak.start_hour, peak.end_hour) for peak in peak_hours] == [(8, 10), (18, 20)]
    assert all(peak.expected_crowd == 400 for peak in peak_hours)
    assert weather.condition == "sunny"

    main, queue = records[0].areas
    assert (main.name, main.capacity) == (MAIN_AREA, 200)
    assert (queue.name, queue.capacity) == (QUEUE_AREA, 100)
    assert queue.latitude == pytest.approx(22.001)


def test_get_simulation_creates_baseline_once(tmp_path):
    repository, service, temple_id, _ = _build_service(tmp_path)

    first = service.get_simulation(temple_id)
    second = service.get_simulation(temple_id, date(2026, 3, 1))

    assert first.simulation.simulation_id == second.simulation.simulation_id
    assert first.current_status.hour == 9
    assert first.current_status.expected_visitors == 120
    assert first.current_status.crowd_density is Density.LOW
    assert [area.name for area in first.areas] == [MAIN_AREA, QUEUE_AREA]


def test_unknown_temple_raises_not_found(tmp_path):
    _, service, _, _ = _build_service(tmp_path)
    with pytest.raises(NotFoundError):
        service.get_simulation(999)


def test_ingest_update_classifies_and_raises_alerts(tmp_path):
    repository, service, temple_id, _ = _build_service(tmp_path)

    result = service.ingest_update(
        temple_id,
        hour=9,
        actual_visitors=190,
        areas=[AreaReading(name="Main Temple", capacity=200, current_occupancy=185)],
        weather=WeatherImpact(condition="rainy", temperature=21.0, impact_level="low", expected_reduction=10),
    )

    assert result.record.expected_visitors == 120
    assert result.record.crowd_density is Density.CRITICAL
    assert result.record.wait_time == 30
    assert result.record.areas[0].density_level is Density.CRITICAL
    assert [alert.severity for alert in result.alerts_created] == [AlertSeverity.HIGH]
    assert repository.get_temple(temple_id).current_occupancy == 190

    view = service.get_simulation(temple_id)
    assert view.simulation.weather.condition == "rainy"
    assert view.simulation.record_for(9).actual_visitors == 190
    assert len(view.active_alerts) == 1


def test_repeated_readings_do_not_duplicate_alerts(tmp_path):
    repository, service, temple_id, _ = _build_service(tmp_path)

    service.ingest_update(temple_id, hour=9, actual_visitors=190)
    second = service.ingest_update(temple_id, hour=10, actual_visitors=195)
    third = service.ingest_update(temple_id, hour=11, actual_visitors=230)

    assert second.alerts_created == []
    assert [alert.severity for alert in third.alerts_created] == [AlertSeverity.CRITICAL]
    assert repository.count_alerts(temple_id, active_only=True) == 2


def test_ingest_keeps_existing_areas_when_none_supplied(tmp_path):
    _, service, temple_id, _ = _build_service(tmp_path)
    result = service.ingest_update(temple_id, hour=7, actual_visitors=30, expected_visitors=50)
    assert result.record.expected_visitors == 50
    assert [area.name for area in result.record.areas] == [MAIN_AREA, QUEUE_AREA]


def test_ingest_rejects_invalid_input(tmp_path):
    _, service, temple_id, _ = _build_service(tmp_path)
    with pytest.raises(ValidationError):
        service.ingest_update(temple_id, hour=24, actual_visitors=10)
    with pytest.raises(ValidationError):
        service.ingest_update(temple_id, hour=9, actual_visitors=-1)
    with pytest.raises(ValidationError):
        service.ingest_update(
            temple_id,
            hour=9,
            actual_visitors=10,
            weather=WeatherImpact(condition="hail", temperature=5.0),
        )


def test_synthetic_reading_is_reproducible_for_a_seed(tmp_path):
    _, first_service, first_temple, _ = _build_service(tmp_path / "a")
    _, second_service, second_temple, _ = _build_service(tmp_path / "b")

    first = first_service.ingest_synthetic(first_temple, hour=9)
    second = second_service.ingest_synthetic(second_temple, hour=9)

    assert first.record.actual_visitors == second.record.actual_visitors
    assert first.record.actual_visitors >= 0
    assert sum(area.current_occupancy for area in first.record.areas) == first.record.actual_visitors


def test_manual_alert_and_resolve(tmp_path):
    _, service, temple_id, _ = _build_service(tmp_path)

    alert = service.add_alert(temple_id, AlertType.WEATHER, AlertSeverity.MEDIUM, "Heavy rain expected", ["Queue Area"])
    resolved = service.resolve_alert(temple_id, alert.alert_id)
    again = service.resolve_alert(temple_id, alert.alert_id)

    assert resolved.is_active is False
    assert again.resolved_at == resolved.resolved_at
    assert service.get_simulation(temple_id).active_alerts == []


def test_heatmap_defaults_to_current_hour(tmp_path):
    _, service, temple_id, _ = _build_service(tmp_path)

    empty = service.heatmap(temple_id)
    assert empty.hour == 9
    assert empty.areas == ()

    service.ingest_update(
        temple_id,
        hour=9,
        actual_visitors=80,
        areas=[AreaReading(name="North Gate", capacity=50, current_occupancy=20, latitude=22.0, longitude=70.0)],
    )
    heatmap = service.heatmap(temple_id, 9)
    assert [(area.name, area.density_level) for area in heatmap.areas] == [("North Gate", Density.MEDIUM)]


def test_ingest_broadcasts_status_and_alerts(tmp_path):
    hub = BroadcastHub(queue_size=10)
    _, service, temple_id, _ = _build_service(tmp_path, broadcast_hub=hub)

    async def scenario() -> list[str]:
        subscription = hub.subscribe(temple_id)
        try:
            await asyncio.to_thread(service.ingest_update, temple_id, 9, 190)
            events = []
            for _ in range(2):
                event = await subscription.next_event(timeout=2.0)
                events.append(event)
            return events
        finally:
            hub.unsubscribe(subscription)

    status_event, alert_event = asyncio.run(scenario())

    assert status_event.event == "status"
    assert status_event.payload["currentOccupancy"] == 190
    assert status_event.payload["occupancyPercentage"] == 95
    assert alert_event.event == "alert"
    assert alert_event.payload["severity"] == "high"
    assert hub.subscriber_count(temple_id) == 0


def test_concurrent_synthetic_readings_draw_each_noise_value_once(tmp_path):
    _, service, temple_id, settings = _build_service(tmp_path)
    service.get_simulation(temple_id)
    reference = np.random.default_rng(settings.synthetic_random_seed)
    expected = sorted(
        int(round(120 * max(0.0, float(reference.normal(1.0, settings.synthetic_noise_sd)))))
        for _ in range(12)
    )

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: service.ingest_synthetic(temple_id, hour=9), range(12)))

    assert sorted(result.record.actual_visitors for result in results) == expected

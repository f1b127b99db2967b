"""Tests for density classification and both wait-time models."""

from __future__ import annotations

import pytest

from backend.domain.models import Density, HourlyCrowdRecord
from backend.services.crowd_estimator import (
    classify_area_density,
    classify_density,
    estimate_queue_wait_minutes,
    estimate_wait_minutes,
    overall_density,
)


@pytest.mark.parametrize(
    ("actual", "expected", "density"),
    [
        (49, 100, Density.LOW),
        (50, 100, Density.MEDIUM),
        (79, 100, Density.MEDIUM),
        (80, 100, Density.HIGH),
        (119, 100, Density.HIGH),
        (120, 100, Density.CRITICAL),
    ],
)
def test_classify_density_boundaries(actual: int, expected: int, density: Density) -> None:
    assert classify_density(actual, expected) is density


def test_classify_density_with_zero_expected_is_low() -> None:
    assert classify_density(500, 0) is Density.LOW


@pytest.mark.parametrize(
    ("occupancy", "density"),
    [(29, Density.LOW), (30, Density.MEDIUM), (60, Density.HIGH), (89, Density.HIGH), (90, Density.CRITICAL)],
)
def test_classify_area_density_boundaries(occupancy: int, density: Density) -> None:
    assert classify_area_density(occupancy, 100) is density


def test_area_with_no_capacity_is_low() -> None:
    assert classify_area_density(10, 0) is Density.LOW


def test_overall_density_uses_tighter_thresholds() -> None:
    record = HourlyCrowdRecord(hour=9, expected_visitors=100, actual_visitors=60)
    assert overall_density(record) is Density.HIGH
    assert overall_density(None) is Density.LOW


@pytest.mark.parametrize(
    ("actual", "minutes"),
    [(0, 0), (29, 0), (30, 5), (59, 5), (60, 15), (79, 15), (80, 30), (95, 30), (150, 30)],
)
def test_estimate_wait_minutes_steps(actual: int, minutes: int) -> None:
    assert estimate_wait_minutes(actual, 100) == minutes


def test_estimate_wait_minutes_without_capacity_is_zero() -> None:
    assert estimate_wait_minutes(40, 0) == 0


def test_queue_estimate_uses_service_rate() -> None:
    # 100 per 30 minutes across 2 lanes -> 6.67 visitors per minute
    estimate = estimate_queue_wait_minutes(120, 100, 30, 2)
    assert estimate.minutes == 18
    assert estimate.level == "low"


def test_queue_estimate_levels() -> None:
    assert estimate_queue_wait_minutes(400, 100, 30, 2).level == "medium"
    assert estimate_queue_wait_minutes(700, 100, 30, 2).level == "high"


def test_queue_estimate_with_empty_queue_is_zero_low() -> None:
    estimate = estimate_queue_wait_minutes(0, 100)
    assert estimate.minutes == 0
    assert estimate.level == "low"


def test_queue_estimate_defaults_replace_zero_duration_and_lanes() -> None:
    assert estimate_queue_wait_minutes(120, 100, 0, 0) == estimate_queue_wait_minutes(120, 100, 30, 2)
    assert estimate_queue_wait_minutes(120, 100, None, None) == estimate_queue_wait_minutes(120, 100)


def test_queue_estimate_without_capacity_is_unknown() -> None:
    estimate = estimate_queue_wait_minutes(50, 0)
    assert estimate.minutes is None
    assert estimate.level == "unknown"

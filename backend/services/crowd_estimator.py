"""Pure crowd classification and wait-time estimation.

Two wait-time models coexist on purpose: `estimate_wait_minutes` is the coarse
step function stored on hourly records, while `estimate_queue_wait_minutes`
backs the public estimator endpoint. Callers depend on each separately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from backend.domain.models import Density, HourlyCrowdRecord, round_half_up


DEFAULT_SLOT_DURATION_MINUTES = 30
DEFAULT_LANES = 2


@dataclass(frozen=True)
class QueueWaitEstimate:
    minutes: Optional[int]
    level: str


def _ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator


def classify_density(actual_visitors: int, expected_visitors: int) -> Density:
    """Classify observed visitors against the forecast baseline."""
    ratio = _ratio(actual_visitors, expected_visitors)
    if ratio < 0.5:
        return Density.LOW
    if ratio < 0.8:
        return Density.MEDIUM
    if ratio < 1.2:
        return Density.HIGH
    return Density.CRITICAL


def classify_area_density(current_occupancy: int, capacity: int) -> Density:
    ratio = _ratio(current_occupancy, capacity)
    if ratio < 0.3:
        return Density.LOW
    if ratio < 0.6:
        return Density.MEDIUM
    if ratio < 0.9:
        return Density.HIGH
    return Density.CRITICAL


def overall_density(record: Optional[HourlyCrowdRecord]) -> Density:
    """Crowd level shown to visitors for one hour; low when the hour is unknown."""
    if record is None:
        return Density.LOW
    ratio = _ratio(record.actual_visitors, record.expected_visitors)
    if ratio < 0.3:
        return Density.LOW
    if ratio < 0.6:
        return Density.MEDIUM
    if ratio < 0.9:
        return Density.HIGH
    return Density.CRITICAL


def estimate_wait_minutes(actual_visitors: int, capacity: int) -> int:
    ratio = _ratio(actual_visitors, capacity)
    if ratio < 0.3:
        return 0
    if ratio < 0.6:
        return 5
    if ratio < 0.8:
        return 15
    return 30


def estimate_queue_wait_minutes(
    current_visitors: float,
    capacity_per_slot: float,
    slot_duration_minutes: Optional[float] = DEFAULT_SLOT_DURATION_MINUTES,
    lanes: Optional[float] = DEFAULT_LANES,
) -> QueueWaitEstimate:
    """Estimate queue wait from a service rate of `capacity / duration * lanes` per minute.

    Zero or missing duration and lanes fall back to the defaults; anything
    below one is raised to one. A non-positive capacity yields an unknown wait.
    """
    duration = max(1.0, float(slot_duration_minutes or DEFAULT_SLOT_DURATION_MINUTES))
    lane_count = max(1.0, float(lanes or DEFAULT_LANES))
    visitors = float(current_visitors or 0)

    service_rate = (capacity_per_slot / duration) * lane_count if capacity_per_slot > 0 else 0.0
    if service_rate <= 0:
        return QueueWaitEstimate(minutes=None, level="unknown")

    minutes = max(0, round_half_up(visitors / service_rate))
    if minutes > 90:
        level = "high"
    elif minutes > 45:
        level = "medium"
    else:
        level = "low"
    return QueueWaitEstimate(minutes=minutes, level=level)

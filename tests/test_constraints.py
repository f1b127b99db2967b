"""Tests for slot, booking and ingestion validation rules."""

from __future__ import annotations

import pytest

from backend.domain.constraints import (
    BookingLimits,
    generate_time_windows,
    time_to_minutes,
    validate_hour,
    validate_rating,
    validate_slot_config,
    validate_time_window,
    validate_visitor_counts,
    validate_visitors,
    validate_weather,
)
from backend.domain.errors import ValidationError
from backend.domain.models import Visitor


LIMITS = BookingLimits(min_visitors=1, max_visitors=10)


def visitors(count: int, **overrides) -> list[Visitor]:
    """Return `count` valid visitors, optionally overriding fields on each."""
    defaults = {"name": "Asha Rao", "age": 34, "gender": "female"}
    defaults.update(overrides)
    return [Visitor(**defaults) for _ in range(count)]


# --- time windows ---

def test_generate_time_windows_splits_day_into_back_to_back_windows() -> None:
    windows = generate_time_windows("06:00", "08:00", 30)
    assert windows == [
        ("06:00", "06:30"),
        ("06:30", "07:00"),
        ("07:00", "07:30"),
        ("07:30", "08:00"),
    ]


def test_generate_time_windows_drops_trailing_partial_window() -> None:
    assert generate_time_windows("06:00", "07:15", 30) == [("06:00", "06:30"), ("06:30", "07:00")]


def test_generate_time_windows_rejects_zero_duration() -> None:
    with pytest.raises(ValidationError):
        generate_time_windows("06:00", "07:00", 0)


def test_time_to_minutes_parses_24_hour_clock() -> None:
    assert time_to_minutes("00:00") == 0
    assert time_to_minutes("23:59") == 23 * 60 + 59


@pytest.mark.parametrize("value", ["24:00", "7:00", "07:60", "0700", ""])
def test_malformed_time_raises(value: str) -> None:
    with pytest.raises(ValidationError):
        time_to_minutes(value)


def test_time_window_must_be_ordered() -> None:
    validate_time_window("09:00", "09:30")
    with pytest.raises(ValidationError):
        validate_time_window("09:30", "09:30")
    with pytest.raises(ValidationError):
        validate_time_window("10:00", "09:30")


# --- slot config ---

def test_slot_capacity_must_be_positive() -> None:
    validate_slot_config(capacity=1, price=0.0)
    with pytest.raises(ValidationError):
        validate_slot_config(capacity=0, price=0.0)


def test_slot_prices_must_be_non_negative() -> None:
    with pytest.raises(ValidationError):
        validate_slot_config(capacity=10, price=-1.0)
    with pytest.raises(ValidationError):
        validate_slot_config(capacity=10, price=10.0, additional_price=-0.5)


# --- visitors ---

def test_valid_visitors_pass() -> None:
    validate_visitors(3, visitors(3), LIMITS)


@pytest.mark.parametrize("count", [0, 11])
def test_visitors_count_outside_limits_raises(count: int) -> None:
    with pytest.raises(ValidationError):
        validate_visitors(count, visitors(count), LIMITS)


def test_visitors_count_must_match_visitor_list() -> None:
    with pytest.raises(ValidationError, match="does not match"):
        validate_visitors(2, visitors(3), LIMITS)


def test_visitor_fields_are_checked() -> None:
    with pytest.raises(ValidationError):
        validate_visitors(1, visitors(1, name="A"), LIMITS)
    with pytest.raises(ValidationError):
        validate_visitors(1, visitors(1, age=121), LIMITS)
    with pytest.raises(ValidationError):
        validate_visitors(1, visitors(1, gender="unknown"), LIMITS)
    with pytest.raises(ValidationError):
        validate_visitors(1, visitors(1, id_type="library_card"), LIMITS)


# --- ingestion ---

def test_hour_bounds() -> None:
    validate_hour(0)
    validate_hour(23)
    with pytest.raises(ValidationError):
        validate_hour(24)
    with pytest.raises(ValidationError):
        validate_hour(-1)


def test_negative_visitor_counts_raise() -> None:
    validate_visitor_counts(None, 0)
    with pytest.raises(ValidationError):
        validate_visitor_counts(None, -1)
    with pytest.raises(ValidationError):
        validate_visitor_counts(-5, 10)


def test_weather_values_are_enumerated() -> None:
    validate_weather("rainy", "medium")
    with pytest.raises(ValidationError):
        validate_weather("hail", "low")
    with pytest.raises(ValidationError):
        validate_weather("sunny", "extreme")


# --- check-out feedback ---

def test_rating_and_comment_limits() -> None:
    validate_rating(None, None, 500)
    validate_rating(5, "Peaceful darshan", 500)
    with pytest.raises(ValidationError):
        validate_rating(0, None, 500)
    with pytest.raises(ValidationError):
        validate_rating(3, "x" * 501, 500)

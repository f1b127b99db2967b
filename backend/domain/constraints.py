"""Domain-level validation rules for slots, bookings and crowd ingestion."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from backend.domain.errors import ValidationError
from backend.domain.models import Visitor


TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
VISITOR_GENDERS = frozenset({"male", "female", "other"})
VISITOR_ID_TYPES = frozenset({"aadhar", "pan", "passport", "driving_license"})
WEATHER_CONDITIONS = frozenset({"sunny", "rainy", "cloudy", "stormy", "foggy"})
WEATHER_IMPACT_LEVELS = frozenset({"none", "low", "medium", "high"})


@dataclass(frozen=True)
class BookingLimits:
    min_visitors: int
    max_visitors: int


def time_to_minutes(value: str) -> int:
    """Convert `HH:MM` into minutes after midnight."""
    validate_time_of_day(value)
    hours, minutes = (int(part) for part in value.split(":"))
    return hours * 60 + minutes


def minutes_to_time(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def generate_time_windows(
    open_time: str,
    close_time: str,
    duration_minutes: int,
) -> list[tuple[str, str]]:
    """Split [open_time, close_time) into back-to-back windows of `duration_minutes`."""
    if duration_minutes <= 0:
        raise ValidationError("slot duration must be > 0 minutes")
    start = time_to_minutes(open_time)
    end = time_to_minutes(close_time)
    windows: list[tuple[str, str]] = []
    while start + duration_minutes <= end:
        windows.append((minutes_to_time(start), minutes_to_time(start + duration_minutes)))
        start += duration_minutes
    return windows


def validate_time_of_day(value: str) -> None:
    if TIME_PATTERN.fullmatch(value) is None:
        raise ValidationError(f"time '{value}' must follow HH:MM 24-hour format")


def validate_time_window(start_time: str, end_time: str) -> None:
    validate_time_of_day(start_time)
    validate_time_of_day(end_time)
    if time_to_minutes(start_time) >= time_to_minutes(end_time):
        raise ValidationError("start_time must be earlier than end_time on the same day")


def validate_slot_config(capacity: int, price: float, additional_price: float = 0.0) -> None:
    if capacity < 1:
        raise ValidationError("capacity must be at least 1")
    if price < 0:
        raise ValidationError("price must be >= 0")
    if additional_price < 0:
        raise ValidationError("special event additional_price must be >= 0")


def validate_visitors(
    visitors_count: int,
    visitors: Sequence[Visitor],
    limits: BookingLimits,
) -> None:
    if not limits.min_visitors <= visitors_count <= limits.max_visitors:
        raise ValidationError(
            f"visitors_count must be between {limits.min_visitors} and {limits.max_visitors}"
        )
    if len(visitors) != visitors_count:
        raise ValidationError("Visitors count does not match visitors data")
    for visitor in visitors:
        if len(visitor.name.strip()) < 2:
            raise ValidationError("Visitor name is required")
        if not 0 <= visitor.age <= 120:
            raise ValidationError("Valid age is required")
        if visitor.gender not in VISITOR_GENDERS:
            raise ValidationError("Valid gender is required")
        if visitor.id_type is not None and visitor.id_type not in VISITOR_ID_TYPES:
            raise ValidationError(f"Unsupported id_type '{visitor.id_type}'")


def validate_seats(seats: int) -> None:
    if seats < 1:
        raise ValidationError("seats must be a positive integer")


def validate_hour(hour: int) -> None:
    if not 0 <= hour <= 23:
        raise ValidationError("hour must be between 0 and 23")


def validate_visitor_counts(expected_visitors: Optional[int], actual_visitors: int) -> None:
    if actual_visitors < 0:
        raise ValidationError("actual_visitors must be >= 0")
    if expected_visitors is not None and expected_visitors < 0:
        raise ValidationError("expected_visitors must be >= 0")


def validate_rating(rating: Optional[int], comment: Optional[str], comment_max_length: int) -> None:
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")
    if comment is not None and len(comment.strip()) > comment_max_length:
        raise ValidationError(f"Comment cannot exceed {comment_max_length} characters")


def validate_weather(condition: str, impact_level: str) -> None:
    if condition not in WEATHER_CONDITIONS:
        raise ValidationError(f"Unsupported weather condition '{condition}'")
    if impact_level not in WEATHER_IMPACT_LEVELS:
        raise ValidationError(f"Unsupported weather impact level '{impact_level}'")

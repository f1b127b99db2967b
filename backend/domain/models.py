"""Domain models for slots, bookings and crowd simulation."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (percentages, minutes)."""
    return int(math.floor(value + 0.5))


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    FULL = "full"
    CANCELLED = "cancelled"
    MAINTENANCE = "maintenance"

    @property
    def is_manual(self) -> bool:
        """Manual states are set by an operator and never toggled automatically."""
        return self in (SlotStatus.CANCELLED, SlotStatus.MAINTENANCE)


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Density(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    OVERCROWDING = "overcrowding"
    EMERGENCY = "emergency"
    MAINTENANCE = "maintenance"
    WEATHER = "weather"
    SPECIAL_EVENT = "special_event"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Role(str, Enum):
    PILGRIM = "pilgrim"
    ADMIN = "admin"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: Role
    name: str
    email: str = ""
    phone: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class Temple:
    temple_id: int
    name: str
    city: str
    latitude: float
    longitude: float
    max_visitors_per_slot: int
    open_time: str
    close_time: str
    slot_duration_minutes: int
    current_occupancy: int = 0
    is_open: bool = True

    @property
    def occupancy_percentage(self) -> int:
        return round_half_up(self.current_occupancy / self.max_visitors_per_slot * 100)


@dataclass(frozen=True)
class SpecialEvent:
    name: str
    description: str = ""
    additional_price: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "additional_price": self.additional_price,
        }


@dataclass(frozen=True)
class Slot:
    slot_id: int
    temple_id: int
    date: date
    start_time: str
    end_time: str
    capacity: int
    booked_count: int
    price: float
    status: SlotStatus
    is_active: bool = True
    special_event: Optional[SpecialEvent] = None

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.booked_count)

    @property
    def occupancy_percentage(self) -> int:
        return round_half_up(self.booked_count / self.capacity * 100)

    @property
    def additional_price(self) -> float:
        if self.special_event is None:
            return 0.0
        return self.special_event.additional_price


@dataclass(frozen=True)
class Visitor:
    name: str
    age: int
    gender: str
    id_type: Optional[str] = None
    id_number: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "age": self.age,
            "gender": self.gender,
            "id_type": self.id_type,
            "id_number": self.id_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Visitor":
        return cls(
            name=str(data["name"]),
            age=int(data["age"]),
            gender=str(data["gender"]),
            id_type=data.get("id_type"),
            id_number=data.get("id_number"),
        )


@dataclass(frozen=True)
class CheckIn:
    time: datetime
    verified_by: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class CheckOut:
    time: datetime
    rating: Optional[int] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class Booking:
    booking_id: int
    booking_code: str
    user_id: str
    user_name: str
    temple_id: int
    slot_id: int
    visitors_count: int
    visitors: tuple[Visitor, ...]
    contact_email: str
    contact_phone: str
    total_amount: float
    payment_status: PaymentStatus
    status: BookingStatus
    qr_code: str
    special_requests: tuple[str, ...] = ()
    check_in: Optional[CheckIn] = None
    check_out: Optional[CheckOut] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return (
            self.status is BookingStatus.CONFIRMED
            and self.payment_status is PaymentStatus.COMPLETED
        )


@dataclass(frozen=True)
class AreaOccupancy:
    name: str
    capacity: int
    current_occupancy: int = 0
    density_level: Density = Density.LOW
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def occupancy_percentage(self) -> int:
        if self.capacity <= 0:
            return 0
        return round_half_up(self.current_occupancy / self.capacity * 100)


@dataclass(frozen=True)
class HourlyCrowdRecord:
    hour: int
    expected_visitors: int
    actual_visitors: int = 0
    crowd_density: Density = Density.LOW
    wait_time: int = 0
    areas: tuple[AreaOccupancy, ...] = ()


@dataclass(frozen=True)
class PeakHour:
    start_hour: int
    end_hour: int
    expected_crowd: int
    reason: str


@dataclass(frozen=True)
class WeatherImpact:
    condition: str
    temperature: float
    impact_level: str = "none"
    expected_reduction: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition": self.condition,
            "temperature": self.temperature,
            "impact_level": self.impact_level,
            "expected_reduction": self.expected_reduction,
        }


@dataclass(frozen=True)
class Alert:
    alert_id: int
    simulation_id: int
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    affected_areas: tuple[str, ...]
    is_active: bool
    created_at: datetime
    resolved_at: Optional[datetime] = None


@dataclass(frozen=True)
class CrowdSimulation:
    """One temple's crowd picture for one calendar day."""

    simulation_id: int
    temple_id: int
    date: date
    hourly: dict[int, HourlyCrowdRecord] = field(default_factory=dict)
    alerts: dict[int, Alert] = field(default_factory=dict)
    peak_hours: tuple[PeakHour, ...] = ()
    weather: Optional[WeatherImpact] = None

    def record_for(self, hour: int) -> Optional[HourlyCrowdRecord]:
        return self.hourly.get(hour)

    def active_alerts(self) -> list[Alert]:
        return [
            alert
            for alert_id, alert in sorted(self.alerts.items())
            if alert.is_active and alert.resolved_at is None
        ]

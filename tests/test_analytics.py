from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

import pytest

from backend.domain.errors import ValidationError
from backend.domain.models import Identity, Role, Visitor
from backend.repository.data_repository import DataRepository, SlotInsert
from backend.services.analytics_service import AnalyticsService
from backend.services.booking_service import BookingService
from backend.services.capacity_ledger import CapacityLedger
from backend.services.qr_service import QrPayload
from backend.utils.config import get_settings


PILGRIM = Identity(user_id="pilgrim-1", role=Role.PILGRIM, name="Asha Rao")
ADMIN = Identity(user_id="admin", role=Role.ADMIN, name="Administrator")


class StubQrService:
    def encode(self, payload: QrPayload) -> str:
        return "data:image/png;base64,stub"


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _setup(tmp_path):
    settings = replace(get_settings(), database_path=tmp_path / "analytics.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    first = repository.create_temple("Somnath Temple", "Somnath", 20.9, 70.4, 100)
    second = repository.create_temple("Ambaji Temple", "Ambaji", 24.2, 72.9, 100)
    slot_ids = repository.insert_slots(
        [
            SlotInsert(temple_id=first, date=date(2030, 1, 5), start_time="08:00", end_time="08:30", capacity=100, price=10.0),
            SlotInsert(temple_id=first, date=date(2030, 1, 5), start_time="18:00", end_time="18:30", capacity=100, price=10.0),
            SlotInsert(temple_id=second, date=date(2030, 1, 5), start_time="08:00", end_time="08:30", capacity=100, price=25.0),
        ]
    )
    clock = Clock(datetime(2029, 12, 20, 9, 0))
    bookings = BookingService(
        repository=repository,
        ledger=CapacityLedger(repository),
        qr_service=StubQrService(),
        settings=settings,
        clock=clock,
    )
    analytics = AnalyticsService(repository, settings=settings, clock=lambda: datetime(2029, 12, 31, 12, 0))
    return repository, bookings, analytics, clock, slot_ids


def _visitors(count: int) -> list[Visitor]:
    return [Visitor(name="Pilgrim", age=40, gender="other") for _ in range(count)]


def test_overview_without_bookings_is_empty(tmp_path):
    _, _, analytics, _, _ = _setup(tmp_path)

    overview = analytics.overview()

    assert overview.period == "month"
    assert overview.booking_trends == []
    assert overview.summary["total_bookings"] == 0


def test_overview_aggregates_kept_bookings(tmp_path):
    _, bookings, analytics, clock, (morning, evening, other_temple) = _setup(tmp_path)

    bookings.create_booking(PILGRIM, morning, 2, _visitors(2))
    clock.now = datetime(2029, 12, 28, 10, 0)
    bookings.create_booking(PILGRIM, morning, 1, _visitors(1))
    bookings.create_booking(PILGRIM, evening, 3, _visitors(3))
    cancelled = bookings.create_booking(PILGRIM, other_temple, 2, _visitors(2))
    bookings.cancel_booking(cancelled.booking_id, PILGRIM)

    month = analytics.overview("month")

    assert month.summary == {
        "total_bookings": 3,
        "total_visitors": 6,
        "total_revenue": 60.0,
        "avg_bookings_per_day": 2,
    }
    assert [row["date"] for row in month.booking_trends] == ["2029-12-20", "2029-12-28"]
    assert month.temple_performance[0]["temple_name"] == "Somnath Temple"
    assert month.temple_performance[0]["avg_rating"] is None
    assert {row["hour"]: row["bookings"] for row in month.peak_hours} == {8: 2, 18: 1}
    assert {row["status"]: row["count"] for row in month.cancellation_analysis} == {
        "cancelled": 1,
        "confirmed": 3,
    }

    week = analytics.overview("week")
    assert week.summary["total_bookings"] == 2
    assert week.since == datetime(2029, 12, 24, 12, 0)


def test_ratings_feed_temple_average(tmp_path):
    _, bookings, analytics, _, (morning, _, _) = _setup(tmp_path)
    for rating in (4, 5):
        booking = bookings.create_booking(PILGRIM, morning, 1, _visitors(1))
        bookings.check_in(booking.booking_id, ADMIN)
        bookings.check_out(booking.booking_id, rating=rating)

    performance = analytics.overview("quarter").temple_performance

    assert performance[0]["avg_rating"] == 4.5


def test_unknown_period_raises(tmp_path):
    _, _, analytics, _, _ = _setup(tmp_path)
    with pytest.raises(ValidationError):
        analytics.overview("decade")

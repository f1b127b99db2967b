from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

import pytest

from backend.domain.models import (
    Booking,
    BookingStatus,
    PaymentStatus,
    Slot,
    SlotStatus,
)
from backend.services.slot_lifecycle import (
    can_cancel,
    is_bookable,
    recompute_status,
    slot_start_instant,
    unbookable_reason,
)


SLOT_DATE = date(2026, 3, 1)


def _slot(**overrides) -> Slot:
    defaults = {
        "slot_id": 1,
        "temple_id": 1,
        "date": SLOT_DATE,
        "start_time": "10:00",
        "end_time": "10:30",
        "capacity": 10,
        "booked_count": 8,
        "price": 20.0,
        "status": SlotStatus.AVAILABLE,
    }
    defaults.update(overrides)
    return Slot(**defaults)


def _booking(status: BookingStatus = BookingStatus.CONFIRMED) -> Booking:
    return Booking(
        booking_id=1,
        booking_code="TCMTEST",
        user_id="pilgrim-1",
        user_name="Asha Rao",
        temple_id=1,
        slot_id=1,
        visitors_count=1,
        visitors=(),
        contact_email="",
        contact_phone="",
        total_amount=20.0,
        payment_status=PaymentStatus.COMPLETED,
        status=status,
        qr_code="",
    )


def test_slot_start_instant_combines_date_and_start_time():
    assert slot_start_instant(_slot()) == datetime(2026, 3, 1, 10, 0)


def test_slot_with_enough_spots_before_start_is_bookable():
    now = datetime(2026, 3, 1, 9, 59)
    assert is_bookable(_slot(), 2, now)
    assert not is_bookable(_slot(), 3, now)
    assert unbookable_reason(_slot(), 3, now) == "Only 2 spots available in this slot"


def test_slot_is_not_bookable_once_started():
    now = datetime(2026, 3, 1, 10, 0)
    assert not is_bookable(_slot(), 1, now)
    assert unbookable_reason(_slot(), 1, now) == "Slot has already started"


@pytest.mark.parametrize("status", [SlotStatus.FULL, SlotStatus.CANCELLED, SlotStatus.MAINTENANCE])
def test_non_available_status_blocks_booking(status: SlotStatus):
    slot = _slot(booked_count=0, status=status)
    assert not is_bookable(slot, 1, datetime(2026, 2, 1))
    assert unbookable_reason(slot, 1, datetime(2026, 2, 1)) == f"Slot is {status.value}"


def test_inactive_slot_is_not_bookable():
    slot = _slot(booked_count=0, is_active=False)
    assert not is_bookable(slot, 1, datetime(2026, 2, 1))


def test_cancellation_requires_strictly_more_than_two_hours():
    slot = _slot()
    booking = _booking()
    assert can_cancel(booking, slot, datetime(2026, 3, 1, 7, 59, 59))
    assert not can_cancel(booking, slot, datetime(2026, 3, 1, 8, 0, 0))
    assert not can_cancel(booking, slot, datetime(2026, 3, 1, 9, 0))


def test_only_confirmed_bookings_can_be_cancelled():
    slot = _slot()
    early = datetime(2026, 2, 1)
    for status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW):
        assert not can_cancel(replace(_booking(), status=status), slot, early)


def test_recompute_status_toggles_between_available_and_full():
    assert recompute_status(SlotStatus.AVAILABLE, 10, 10) is SlotStatus.FULL
    assert recompute_status(SlotStatus.FULL, 9, 10) is SlotStatus.AVAILABLE
    assert recompute_status(SlotStatus.AVAILABLE, 0, 10) is SlotStatus.AVAILABLE


def test_recompute_status_is_idempotent():
    once = recompute_status(SlotStatus.AVAILABLE, 10, 10)
    assert recompute_status(once, 10, 10) is once


@pytest.mark.parametrize("status", [SlotStatus.CANCELLED, SlotStatus.MAINTENANCE])
def test_manual_status_is_never_recomputed(status: SlotStatus):
    assert recompute_status(status, 10, 10) is status
    assert recompute_status(status, 0, 10) is status

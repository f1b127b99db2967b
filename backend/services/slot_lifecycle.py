"""Slot bookability, status and cancellation rules.

All functions here are pure: callers pass the current time explicitly, so the
rules can be tested against fixed clocks without a database.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from backend.domain.constraints import time_to_minutes
from backend.domain.models import Booking, BookingStatus, Slot, SlotStatus


CANCELLATION_CUTOFF = timedelta(hours=2)


def slot_start_instant(slot: Slot) -> datetime:
    """Combine slot date and start time as a naive wall-clock instant."""
    minutes = time_to_minutes(slot.start_time)
    return datetime.combine(slot.date, datetime.min.time()) + timedelta(minutes=minutes)


def is_bookable(slot: Slot, requested_seats: int, now: datetime) -> bool:
    return (
        slot.status is SlotStatus.AVAILABLE
        and slot.is_active
        and slot.available_spots >= requested_seats
        and now < slot_start_instant(slot)
    )


def unbookable_reason(slot: Slot, requested_seats: int, now: datetime) -> str:
    """Human-readable explanation matching the first failed bookability check."""
    if not slot.is_active:
        return "Slot is no longer active"
    if slot.status is not SlotStatus.AVAILABLE:
        return f"Slot is {slot.status.value}"
    if slot.available_spots < requested_seats:
        return f"Only {slot.available_spots} spots available in this slot"
    if now >= slot_start_instant(slot):
        return "Slot has already started"
    return "Slot is not available for booking"


def can_cancel(booking: Booking, slot: Slot, now: datetime) -> bool:
    """Confirmed bookings stay cancellable while more than two hours remain."""
    if booking.status is not BookingStatus.CONFIRMED:
        return False
    return slot_start_instant(slot) - now > CANCELLATION_CUTOFF


def recompute_status(status: SlotStatus, booked_count: int, capacity: int) -> SlotStatus:
    """Toggle only between available and full; manual states are kept."""
    if status.is_manual:
        return status
    if booked_count >= capacity:
        return SlotStatus.FULL
    return SlotStatus.AVAILABLE

"""Slot administration and availability queries."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Sequence

from backend.domain.constraints import (
    generate_time_windows,
    validate_seats,
    validate_slot_config,
    validate_time_window,
)
from backend.domain.errors import NotFoundError, ValidationError
from backend.domain.models import Slot, SlotStatus, SpecialEvent
from backend.repository.data_repository import DataRepository, SlotInsert
from backend.services.slot_lifecycle import is_bookable, recompute_status, unbookable_reason
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger, log_event


logger = get_logger(__name__)

MAX_BULK_DAYS = 90


@dataclass(frozen=True)
class SlotView:
    slot: Slot
    is_bookable: bool


@dataclass(frozen=True)
class SlotAvailability:
    slot: Slot
    requested_visitors: int
    is_available: bool
    reason: Optional[str]


@dataclass(frozen=True)
class BulkCreateResult:
    created: int
    skipped: int
    slot_ids: list[int]


class SlotService:
    """Creates, edits and lists slots; seat counts are left to the ledger."""

    def __init__(
        self,
        repository: DataRepository,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self._clock = clock or datetime.now

    def list_slots(
        self,
        temple_id: int,
        slot_date: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> "OrderedDict[str, list[SlotView]]":
        """Active slots grouped by ISO date; defaults to today plus the next seven days."""
        if self._repository.get_temple(temple_id) is None:
            raise NotFoundError("Temple not found")

        now = self._clock()
        if slot_date is not None:
            window_start = window_end = slot_date
        elif start_date is not None and end_date is not None:
            if end_date < start_date:
                raise ValidationError("end_date must not be before start_date")
            window_start, window_end = start_date, end_date
        else:
            window_start = now.date()
            window_end = window_start + timedelta(days=7)

        grouped: OrderedDict[str, list[SlotView]] = OrderedDict()
        for slot in self._repository.list_active_slots(temple_id, window_start, window_end):
            grouped.setdefault(slot.date.isoformat(), []).append(
                SlotView(slot=slot, is_bookable=is_bookable(slot, 1, now))
            )
        return grouped

    def get_slot(self, slot_id: int) -> Slot:
        slot = self._repository.get_slot(slot_id)
        if slot is None or not slot.is_active:
            raise NotFoundError("Slot not found")
        return slot

    def check_availability(self, slot_id: int, visitors: int = 1) -> SlotAvailability:
        validate_seats(visitors)
        slot = self.get_slot(slot_id)
        now = self._clock()
        available = is_bookable(slot, visitors, now)
        return SlotAvailability(
            slot=slot,
            requested_visitors=visitors,
            is_available=available,
            reason=None if available else unbookable_reason(slot, visitors, now),
        )

    def create_slot(
        self,
        temple_id: int,
        slot_date: date,
        start_time: str,
        end_time: str,
        capacity: Optional[int] = None,
        price: float = 0.0,
        special_event: Optional[SpecialEvent] = None,
    ) -> Slot:
        temple = self._repository.get_temple(temple_id)
        if temple is None:
            raise NotFoundError("Temple not found")
        validate_time_window(start_time, end_time)
        resolved_capacity = capacity if capacity is not None else temple.max_visitors_per_slot
        validate_slot_config(
            resolved_capacity,
            price,
            special_event.additional_price if special_event else 0.0,
        )

        with self._repository.transaction() as conn:
            overlapping = self._repository.find_overlapping_slot(
                temple_id,
                slot_date,
                start_time,
                end_time,
                connection=conn,
            )
            if overlapping is not None:
                raise ValidationError("Slot time overlaps with existing slot")
            (slot_id,) = self._repository.insert_slots(
                [
                    SlotInsert(
                        temple_id=temple_id,
                        date=slot_date,
                        start_time=start_time,
                        end_time=end_time,
                        capacity=resolved_capacity,
                        price=price,
                        special_event=special_event,
                    )
                ],
                connection=conn,
            )

        log_event(
            logger,
            "Slot created",
            slot_id=slot_id,
            temple_id=temple_id,
            date=slot_date.isoformat(),
            window=f"{start_time}-{end_time}",
        )
        return self.get_slot(slot_id)

    def bulk_create(
        self,
        temple_id: int,
        start_date: date,
        end_date: date,
        time_windows: Optional[Sequence[tuple[str, str]]] = None,
        capacity: Optional[int] = None,
        price: float = 0.0,
    ) -> BulkCreateResult:
        """Create one slot per window per day in [start_date, end_date].

        Without explicit windows the temple's opening hours are split into
        slot-duration increments. Windows overlapping an active slot are skipped.
        """
        temple = self._repository.get_temple(temple_id)
        if temple is None:
            raise NotFoundError("Temple not found")
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        day_count = (end_date - start_date).days + 1
        if day_count > MAX_BULK_DAYS:
            raise ValidationError(f"bulk creation is limited to {MAX_BULK_DAYS} days")

        windows = list(time_windows) if time_windows else generate_time_windows(
            temple.open_time,
            temple.close_time,
            temple.slot_duration_minutes,
        )
        if not windows:
            raise ValidationError("At least one time window is required")
        for start_time, end_time in windows:
            validate_time_window(start_time, end_time)
        resolved_capacity = capacity if capacity is not None else temple.max_visitors_per_slot
        validate_slot_config(resolved_capacity, price)

        skipped = 0
        with self._repository.transaction() as conn:
            pending: list[SlotInsert] = []
            for offset in range(day_count):
                current_day = start_date + timedelta(days=offset)
                accepted: list[tuple[str, str]] = []
                for start_time, end_time in windows:
                    clashes_existing = self._repository.find_overlapping_slot(
                        temple_id,
                        current_day,
                        start_time,
                        end_time,
                        connection=conn,
                    )
                    clashes_batch = any(
                        start_time < other_end and end_time > other_start
                        for other_start, other_end in accepted
                    )
                    if clashes_existing is not None or clashes_batch:
                        skipped += 1
                        continue
                    accepted.append((start_time, end_time))
                    pending.append(
                        SlotInsert(
                            temple_id=temple_id,
                            date=current_day,
                            start_time=start_time,
                            end_time=end_time,
                            capacity=resolved_capacity,
                            price=price,
                        )
                    )
            slot_ids = self._repository.insert_slots(pending, connection=conn)

        log_event(
            logger,
            "Bulk slots created",
            temple_id=temple_id,
            created=len(slot_ids),
            skipped=skipped,
        )
        return BulkCreateResult(created=len(slot_ids), skipped=skipped, slot_ids=slot_ids)

    def update_slot(
        self,
        slot_id: int,
        capacity: Optional[int] = None,
        price: Optional[float] = None,
        status: Optional[SlotStatus] = None,
        special_event: Optional[SpecialEvent] = None,
        clear_special_event: bool = False,
    ) -> Slot:
        """Edit operator-owned fields.

        `status` accepts cancelled or maintenance as a manual override, or
        available to hand the slot back to automatic available/full tracking.
        """
        if status is SlotStatus.FULL:
            raise ValidationError("full is derived from bookings and cannot be set manually")

        with self._repository.transaction() as conn:
            slot = self._repository.get_slot(slot_id, conn)
            if slot is None or not slot.is_active:
                raise NotFoundError("Slot not found")

            new_capacity = capacity if capacity is not None else slot.capacity
            new_price = price if price is not None else slot.price
            if clear_special_event:
                new_event = None
            else:
                new_event = special_event if special_event is not None else slot.special_event
            validate_slot_config(
                new_capacity,
                new_price,
                new_event.additional_price if new_event else 0.0,
            )
            if new_capacity < slot.booked_count:
                raise ValidationError(
                    f"capacity cannot be lower than the {slot.booked_count} seats already booked"
                )

            if status is not None and status.is_manual:
                new_status = status
            else:
                base = SlotStatus.AVAILABLE if status is not None else slot.status
                new_status = recompute_status(base, slot.booked_count, new_capacity)

            updated = self._repository.update_slot_settings(
                conn,
                slot_id,
                capacity=new_capacity,
                price=new_price,
                status=new_status,
                special_event=new_event,
            )
            if not updated:
                raise ValidationError("capacity cannot be lower than the seats already booked")

        log_event(
            logger,
            "Slot updated",
            slot_id=slot_id,
            capacity=new_capacity,
            price=new_price,
            status=new_status.value,
        )
        return self.get_slot(slot_id)

    def delete_slot(self, slot_id: int) -> None:
        """Soft delete: the row stays for historical bookings."""
        slot = self._repository.get_slot(slot_id)
        if slot is None or not slot.is_active:
            raise NotFoundError("Slot not found")
        self._repository.deactivate_slot(slot_id)
        log_event(logger, "Slot deactivated", slot_id=slot_id)

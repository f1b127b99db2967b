from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date

import pytest

from backend.domain.errors import CapacityExceededError, NotFoundError, ValidationError
from backend.domain.models import SlotStatus
from backend.repository.data_repository import DataRepository, SlotInsert
from backend.services.capacity_ledger import CapacityLedger
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        database_timeout_seconds=30.0,
    )


def _setup(tmp_path, capacity: int = 10) -> tuple[DataRepository, CapacityLedger, int]:
    repository = DataRepository(_build_test_settings(tmp_path, "ledger.db"))
    repository.initialize_database()
    temple_id = repository.create_temple("Ledger Temple", "Testville", 22.0, 70.0, capacity)
    (slot_id,) = repository.insert_slots(
        [
            SlotInsert(
                temple_id=temple_id,
                date=date(2030, 1, 1),
                start_time="10:00",
                end_time="10:30",
                capacity=capacity,
                price=20.0,
            )
        ]
    )
    return repository, CapacityLedger(repository), slot_id


def test_reserve_and_release_round_trip(tmp_path):
    repository, ledger, slot_id = _setup(tmp_path)

    reserved = ledger.reserve(slot_id, 4)
    assert reserved.booked_count == 4
    assert reserved.available_spots == 6
    assert reserved.status is SlotStatus.AVAILABLE
    assert not reserved.status_changed

    released = ledger.release(slot_id, 4)
    assert released.booked_count == 0
    assert repository.get_slot(slot_id).booked_count == 0


def test_reserve_to_capacity_marks_slot_full(tmp_path):
    repository, ledger, slot_id = _setup(tmp_path)
    ledger.reserve(slot_id, 8)

    result = ledger.reserve(slot_id, 2)

    assert result.status is SlotStatus.FULL
    assert result.status_changed
    assert repository.get_slot(slot_id).status is SlotStatus.FULL


def test_release_from_full_restores_available(tmp_path):
    repository, ledger, slot_id = _setup(tmp_path)
    ledger.reserve(slot_id, 10)

    result = ledger.release(slot_id, 1)

    assert result.previous_status is SlotStatus.FULL
    assert result.status is SlotStatus.AVAILABLE
    assert repository.get_slot(slot_id).available_spots == 1


def test_reserve_beyond_capacity_is_refused_without_change(tmp_path):
    repository, ledger, slot_id = _setup(tmp_path)
    ledger.reserve(slot_id, 9)

    with pytest.raises(CapacityExceededError):
        ledger.reserve(slot_id, 2)

    assert repository.get_slot(slot_id).booked_count == 9


def test_release_never_goes_below_zero(tmp_path):
    repository, ledger, slot_id = _setup(tmp_path)
    ledger.reserve(slot_id, 1)

    result = ledger.release(slot_id, 5)

    assert result.booked_count == 0


def test_manual_status_survives_ledger_changes(tmp_path):
    repository, ledger, slot_id = _setup(tmp_path)
    with repository.transaction() as conn:
        repository.update_slot_settings(
            conn,
            slot_id,
            capacity=10,
            price=20.0,
            status=SlotStatus.MAINTENANCE,
            special_event=None,
        )

    result = ledger.reserve(slot_id, 10)
    assert result.status is SlotStatus.MAINTENANCE
    assert ledger.release(slot_id, 10).status is SlotStatus.MAINTENANCE


def test_unknown_slot_raises_not_found(tmp_path):
    _, ledger, _ = _setup(tmp_path)
    with pytest.raises(NotFoundError):
        ledger.reserve(9999, 1)
    with pytest.raises(NotFoundError):
        ledger.release(9999, 1)


def test_non_positive_seats_rejected(tmp_path):
    _, ledger, slot_id = _setup(tmp_path)
    with pytest.raises(ValidationError):
        ledger.reserve(slot_id, 0)


def test_concurrent_reservations_never_oversell(tmp_path):
    repository, ledger, slot_id = _setup(tmp_path, capacity=10)

    def attempt(_: int) -> bool:
        try:
            ledger.reserve(slot_id, 1)
        except CapacityExceededError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(25)))

    slot = repository.get_slot(slot_id)
    assert sum(outcomes) == 10
    assert slot.booked_count == 10
    assert slot.status is SlotStatus.FULL


def test_interleaved_reserves_and_releases_keep_counter_in_bounds(tmp_path):
    repository, ledger, slot_id = _setup(tmp_path, capacity=10)
    ledger.reserve(slot_id, 5)
    observed: list[int] = []

    def cycle(index: int) -> int:
        seats = 1 + index % 3
        try:
            reserved = ledger.reserve(slot_id, seats)
        except CapacityExceededError:
            return 0
        observed.append(reserved.booked_count)
        released = ledger.release(slot_id, seats)
        observed.append(released.booked_count)
        return seats

    with ThreadPoolExecutor(max_workers=8) as pool:
        held = list(pool.map(cycle, range(60)))

    assert any(held)
    assert observed
    assert all(0 <= count <= 10 for count in observed)
    slot = repository.get_slot(slot_id)
    assert slot.booked_count == 5
    assert slot.status is SlotStatus.AVAILABLE

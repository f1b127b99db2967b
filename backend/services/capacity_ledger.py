"""Atomic seat accounting for slots.

This is the only module that writes `Slots.booked_count`. Each reservation is a
single conditional UPDATE evaluated by SQLite at commit time, so concurrent
requests for the same slot can never push the counter past capacity. Requests
for different slots touch different rows and share no in-process lock.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Optional

from backend.domain.constraints import validate_seats
from backend.domain.errors import CapacityExceededError, NotFoundError
from backend.domain.models import SlotStatus
from backend.repository.data_repository import DataRepository
from backend.services.slot_lifecycle import recompute_status
from backend.utils.logger import get_logger, log_event


logger = get_logger(__name__)


@dataclass(frozen=True)
class LedgerResult:
    slot_id: int
    temple_id: int
    booked_count: int
    capacity: int
    previous_status: SlotStatus
    status: SlotStatus

    @property
    def status_changed(self) -> bool:
        return self.previous_status is not self.status

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.booked_count)


class CapacityLedger:
    """Reserve and release seats against a slot's persisted counter."""

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def reserve(
        self,
        slot_id: int,
        seats: int,
        connection: Optional[sqlite3.Connection] = None,
    ) -> LedgerResult:
        validate_seats(seats)
        with self._repository.transaction(connection) as conn:
            cursor = conn.execute(
                """
                UPDATE Slots
                SET booked_count = booked_count + ?
                WHERE id = ? AND booked_count + ? <= capacity;
                """,
                (seats, slot_id, seats),
            )
            if cursor.rowcount == 0:
                if self._load(conn, slot_id) is None:
                    raise NotFoundError(f"slot_id {slot_id} was not found")
                log_event(logger, "Reservation refused", slot_id=slot_id, seats=seats)
                raise CapacityExceededError(slot_id, seats)
            result = self._sync_status(conn, slot_id)
        log_event(
            logger,
            "Seats reserved",
            slot_id=slot_id,
            seats=seats,
            booked_count=result.booked_count,
            status=result.status.value,
        )
        return result

    def release(
        self,
        slot_id: int,
        seats: int,
        connection: Optional[sqlite3.Connection] = None,
    ) -> LedgerResult:
        validate_seats(seats)
        with self._repository.transaction(connection) as conn:
            cursor = conn.execute(
                """
                UPDATE Slots
                SET booked_count = MAX(0, booked_count - ?)
                WHERE id = ?;
                """,
                (seats, slot_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"slot_id {slot_id} was not found")
            result = self._sync_status(conn, slot_id)
        log_event(
            logger,
            "Seats released",
            slot_id=slot_id,
            seats=seats,
            booked_count=result.booked_count,
            status=result.status.value,
        )
        return result

    @staticmethod
    def _load(conn: sqlite3.Connection, slot_id: int) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT temple_id, booked_count, capacity, status FROM Slots WHERE id = ?;",
            (slot_id,),
        ).fetchone()

    def _sync_status(self, conn: sqlite3.Connection, slot_id: int) -> LedgerResult:
        row = self._load(conn, slot_id)
        previous_status = SlotStatus(str(row["status"]))
        booked_count = int(row["booked_count"])
        capacity = int(row["capacity"])
        status = recompute_status(previous_status, booked_count, capacity)
        if status is not previous_status:
            conn.execute(
                "UPDATE Slots SET status = ? WHERE id = ?;",
                (status.value, slot_id),
            )
        return LedgerResult(
            slot_id=slot_id,
            temple_id=int(row["temple_id"]),
            booked_count=booked_count,
            capacity=capacity,
            previous_status=previous_status,
            status=status,
        )

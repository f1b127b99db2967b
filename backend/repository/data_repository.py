"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import random
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence

from backend.domain.constraints import generate_time_windows
from backend.domain.errors import BookingCodeConflictError, TransientError
from backend.domain.models import (
    Alert,
    AlertSeverity,
    AlertType,
    AreaOccupancy,
    Booking,
    BookingStatus,
    CheckIn,
    CheckOut,
    CrowdSimulation,
    Density,
    HourlyCrowdRecord,
    PaymentStatus,
    PeakHour,
    Slot,
    SlotStatus,
    SpecialEvent,
    Temple,
    Visitor,
    WeatherImpact,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


_DEMO_TEMPLES = (
    ("Somnath Temple", "Somnath", 20.8880, 70.4017, 200),
    ("Dwarkadhish Temple", "Dwarka", 22.2394, 68.9678, 150),
    ("Ambaji Temple", "Ambaji", 24.2120, 72.8631, 180),
    ("Pavagadh Temple", "Pavagadh", 22.4833, 73.5333, 120),
)


@dataclass(frozen=True)
class SlotInsert:
    """Slot row prepared by the service layer before insertion."""

    temple_id: int
    date: date
    start_time: str
    end_time: str
    capacity: int
    price: float
    special_event: Optional[SpecialEvent] = None


@dataclass(frozen=True)
class BookingAnalyticsRecord:
    """Flattened booking projection used by the analytics service."""

    booking_id: int
    temple_id: int
    temple_name: str
    city: str
    created_at: str
    start_time: str
    visitors_count: int
    total_amount: float
    status: str
    rating: Optional[int]


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="seconds")


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(str(value))


def _row_to_temple(row: sqlite3.Row) -> Temple:
    return Temple(
        temple_id=int(row["id"]),
        name=str(row["name"]),
        city=str(row["city"]),
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
        max_visitors_per_slot=int(row["max_visitors_per_slot"]),
        open_time=str(row["open_time"]),
        close_time=str(row["close_time"]),
        slot_duration_minutes=int(row["slot_duration_minutes"]),
        current_occupancy=int(row["current_occupancy"]),
        is_open=bool(row["is_open"]),
    )


def _row_to_slot(row: sqlite3.Row) -> Slot:
    special_event = None
    if row["special_event_name"] is not None:
        special_event = SpecialEvent(
            name=str(row["special_event_name"]),
            description=str(row["special_event_description"] or ""),
            additional_price=float(row["special_event_additional_price"] or 0.0),
        )
    return Slot(
        slot_id=int(row["id"]),
        temple_id=int(row["temple_id"]),
        date=date.fromisoformat(str(row["date"])),
        start_time=str(row["start_time"]),
        end_time=str(row["end_time"]),
        capacity=int(row["capacity"]),
        booked_count=int(row["booked_count"]),
        price=float(row["price"]),
        status=SlotStatus(str(row["status"])),
        is_active=bool(row["is_active"]),
        special_event=special_event,
    )


def _row_to_booking(row: sqlite3.Row) -> Booking:
    check_in = None
    if row["check_in_time"] is not None:
        check_in = CheckIn(
            time=_from_iso(row["check_in_time"]),
            verified_by=str(row["check_in_verified_by"] or ""),
            latitude=row["check_in_latitude"],
            longitude=row["check_in_longitude"],
        )
    check_out = None
    if row["check_out_time"] is not None:
        check_out = CheckOut(
            time=_from_iso(row["check_out_time"]),
            rating=row["check_out_rating"],
            comment=row["check_out_comment"],
        )
    return Booking(
        booking_id=int(row["id"]),
        booking_code=str(row["booking_code"]),
        user_id=str(row["user_id"]),
        user_name=str(row["user_name"]),
        temple_id=int(row["temple_id"]),
        slot_id=int(row["slot_id"]),
        visitors_count=int(row["visitors_count"]),
        visitors=tuple(Visitor.from_dict(item) for item in json.loads(row["visitors_json"])),
        contact_email=str(row["contact_email"]),
        contact_phone=str(row["contact_phone"]),
        total_amount=float(row["total_amount"]),
        payment_status=PaymentStatus(str(row["payment_status"])),
        status=BookingStatus(str(row["status"])),
        qr_code=str(row["qr_code"]),
        special_requests=tuple(json.loads(row["special_requests_json"])),
        check_in=check_in,
        check_out=check_out,
        created_at=_from_iso(row["created_at"]),
    )


def _row_to_hourly(row: sqlite3.Row) -> HourlyCrowdRecord:
    areas = tuple(
        AreaOccupancy(
            name=str(item["name"]),
            capacity=int(item["capacity"]),
            current_occupancy=int(item.get("current_occupancy", 0)),
            density_level=Density(item.get("density_level", Density.LOW.value)),
            latitude=item.get("latitude"),
            longitude=item.get("longitude"),
        )
        for item in json.loads(row["areas_json"])
    )
    return HourlyCrowdRecord(
        hour=int(row["hour"]),
        expected_visitors=int(row["expected_visitors"]),
        actual_visitors=int(row["actual_visitors"]),
        crowd_density=Density(str(row["crowd_density"])),
        wait_time=int(row["wait_time"]),
        areas=areas,
    )


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        alert_id=int(row["id"]),
        simulation_id=int(row["simulation_id"]),
        alert_type=AlertType(str(row["alert_type"])),
        severity=AlertSeverity(str(row["severity"])),
        message=str(row["message"]),
        affected_areas=tuple(json.loads(row["affected_areas_json"])),
        is_active=bool(row["is_active"]),
        created_at=_from_iso(row["created_at"]),
        resolved_at=_from_iso(row["resolved_at"]),
    )


def _areas_to_json(areas: Sequence[AreaOccupancy]) -> str:
    return json.dumps(
        [
            {
                "name": area.name,
                "capacity": area.capacity,
                "current_occupancy": area.current_occupancy,
                "density_level": area.density_level.value,
                "latitude": area.latitude,
                "longitude": area.longitude,
            }
            for area in areas
        ]
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Every call opens its own connection. Multi-statement writes go through
    `transaction()`, which takes the database write lock up front
    (`BEGIN IMMEDIATE`) so check-and-write sequences cannot interleave.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            connection = sqlite3.connect(
                self._db_path,
                timeout=self._settings.database_timeout_seconds,
                isolation_level=None,
            )
        except sqlite3.OperationalError as exc:
            raise TransientError(f"Database unavailable: {exc}") from exc
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("PRAGMA foreign_keys = ON;")
            yield connection
        except sqlite3.OperationalError as exc:
            raise TransientError(f"Database operation failed: {exc}") from exc
        finally:
            connection.close()

    @contextmanager
    def transaction(
        self,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one write transaction.

        When `connection` is given the caller already owns a transaction and
        the work joins it instead of committing on its own.
        """
        if connection is not None:
            yield connection
            return
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    @contextmanager
    def _reader(
        self,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Iterator[sqlite3.Connection]:
        if connection is not None:
            yield connection
            return
        with self._connect() as conn:
            yield conn

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS Temples (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        city TEXT NOT NULL,
                        latitude REAL NOT NULL,
                        longitude REAL NOT NULL,
                        max_visitors_per_slot INTEGER NOT NULL CHECK (max_visitors_per_slot >= 1),
                        open_time TEXT NOT NULL DEFAULT '06:00',
                        close_time TEXT NOT NULL DEFAULT '22:00',
                        slot_duration_minutes INTEGER NOT NULL DEFAULT 30,
                        current_occupancy INTEGER NOT NULL DEFAULT 0,
                        is_open INTEGER NOT NULL DEFAULT 1,
                        updated_at TEXT
                    );

                    CREATE TABLE IF NOT EXISTS Slots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        temple_id INTEGER NOT NULL,
                        date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity >= 1),
                        booked_count INTEGER NOT NULL DEFAULT 0
                            CHECK (booked_count >= 0 AND booked_count <= capacity),
                        price REAL NOT NULL DEFAULT 0 CHECK (price >= 0),
                        status TEXT NOT NULL DEFAULT 'available'
                            CHECK (status IN ('available', 'full', 'cancelled', 'maintenance')),
                        special_event_name TEXT,
                        special_event_description TEXT,
                        special_event_additional_price REAL NOT NULL DEFAULT 0,
                        is_active INTEGER NOT NULL DEFAULT 1,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (temple_id) REFERENCES Temples(id)
                    );

                    CREATE TABLE IF NOT EXISTS Bookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        booking_code TEXT NOT NULL UNIQUE,
                        user_id TEXT NOT NULL,
                        user_name TEXT NOT NULL,
                        temple_id INTEGER NOT NULL,
                        slot_id INTEGER NOT NULL,
                        visitors_count INTEGER NOT NULL CHECK (visitors_count >= 1),
                        visitors_json TEXT NOT NULL,
                        contact_email TEXT NOT NULL DEFAULT '',
                        contact_phone TEXT NOT NULL DEFAULT '',
                        total_amount REAL NOT NULL CHECK (total_amount >= 0),
                        payment_status TEXT NOT NULL DEFAULT 'completed',
                        status TEXT NOT NULL DEFAULT 'confirmed',
                        qr_code TEXT NOT NULL,
                        special_requests_json TEXT NOT NULL DEFAULT '[]',
                        check_in_time TEXT,
                        check_in_latitude REAL,
                        check_in_longitude REAL,
                        check_in_verified_by TEXT,
                        check_out_time TEXT,
                        check_out_rating INTEGER CHECK (check_out_rating BETWEEN 1 AND 5),
                        check_out_comment TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT,
                        FOREIGN KEY (temple_id) REFERENCES Temples(id),
                        FOREIGN KEY (slot_id) REFERENCES Slots(id)
                    );

                    CREATE TABLE IF NOT EXISTS CrowdSimulations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        temple_id INTEGER NOT NULL,
                        date TEXT NOT NULL,
                        peak_hours_json TEXT NOT NULL DEFAULT '[]',
                        weather_json TEXT,
                        is_active INTEGER NOT NULL DEFAULT 1,
                        UNIQUE (temple_id, date),
                        FOREIGN KEY (temple_id) REFERENCES Temples(id)
                    );

                    CREATE TABLE IF NOT EXISTS HourlyCrowd (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        simulation_id INTEGER NOT NULL,
                        hour INTEGER NOT NULL CHECK (hour BETWEEN 0 AND 23),
                        expected_visitors INTEGER NOT NULL CHECK (expected_visitors >= 0),
                        actual_visitors INTEGER NOT NULL DEFAULT 0 CHECK (actual_visitors >= 0),
                        crowd_density TEXT NOT NULL DEFAULT 'low',
                        wait_time INTEGER NOT NULL DEFAULT 0,
                        areas_json TEXT NOT NULL DEFAULT '[]',
                        UNIQUE (simulation_id, hour),
                        FOREIGN KEY (simulation_id) REFERENCES CrowdSimulations(id)
                    );

                    CREATE TABLE IF NOT EXISTS Alerts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        simulation_id INTEGER NOT NULL,
                        alert_type TEXT NOT NULL,
                        severity TEXT NOT NULL,
                        message TEXT NOT NULL,
                        affected_areas_json TEXT NOT NULL DEFAULT '[]',
                        is_active INTEGER NOT NULL DEFAULT 1,
                        created_at TEXT NOT NULL,
                        resolved_at TEXT,
                        FOREIGN KEY (simulation_id) REFERENCES CrowdSimulations(id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_slots_temple_date_start
                    ON Slots(temple_id, date, start_time);

                    CREATE INDEX IF NOT EXISTS idx_slots_date_status
                    ON Slots(date, status);

                    CREATE INDEX IF NOT EXISTS idx_bookings_user_created
                    ON Bookings(user_id, created_at);

                    CREATE INDEX IF NOT EXISTS idx_bookings_slot_status
                    ON Bookings(slot_id, status);

                    CREATE INDEX IF NOT EXISTS idx_alerts_simulation_active
                    ON Alerts(simulation_id, is_active, alert_type, severity);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except (sqlite3.Error, TransientError) as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data_if_empty(self, start_date: date) -> int:
        """Seed demo temples and 30-minute slots only when no temple exists.

        Seeded slots start empty: booked seats only ever come from bookings.
        """
        rng = random.Random(self._settings.synthetic_random_seed)
        try:
            with self.transaction() as conn:
                row = conn.execute("SELECT COUNT(*) AS count FROM Temples;").fetchone()
                if int(row["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return 0

                conn.executemany(
                    """
                    INSERT INTO Temples (name, city, latitude, longitude, max_visitors_per_slot)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    _DEMO_TEMPLES,
                )
                temples = [
                    _row_to_temple(item)
                    for item in conn.execute("SELECT * FROM Temples ORDER BY id ASC;").fetchall()
                ]

                slot_rows = []
                for temple in temples:
                    windows = generate_time_windows(
                        temple.open_time,
                        temple.close_time,
                        temple.slot_duration_minutes,
                    )
                    for day in range(self._settings.seed_days_ahead):
                        current_day = start_date + timedelta(days=day)
                        for start_time, end_time in windows:
                            slot_rows.append(
                                (
                                    temple.temple_id,
                                    current_day.isoformat(),
                                    start_time,
                                    end_time,
                                    temple.max_visitors_per_slot,
                                    float(
                                        rng.randint(
                                            self._settings.seed_slot_price_min,
                                            self._settings.seed_slot_price_max,
                                        )
                                    ),
                                )
                            )
                conn.executemany(
                    """
                    INSERT INTO Slots (temple_id, date, start_time, end_time, capacity, price)
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    slot_rows,
                )
            logger.info(
                "Demo seed completed | temples=%s | slots=%s",
                len(temples),
                len(slot_rows),
            )
            return len(slot_rows)
        except (sqlite3.Error, TransientError) as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Temples
    # ------------------------------------------------------------------

    def create_temple(
        self,
        name: str,
        city: str,
        latitude: float,
        longitude: float,
        max_visitors_per_slot: int,
        open_time: str = "06:00",
        close_time: str = "22:00",
        slot_duration_minutes: int = 30,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Temples (
                    name, city, latitude, longitude, max_visitors_per_slot,
                    open_time, close_time, slot_duration_minutes
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    name,
                    city,
                    latitude,
                    longitude,
                    max_visitors_per_slot,
                    open_time,
                    close_time,
                    slot_duration_minutes,
                ),
            )
            return int(cursor.lastrowid)

    def get_temple(
        self,
        temple_id: int,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Temple]:
        with self._reader(connection) as conn:
            row = conn.execute("SELECT * FROM Temples WHERE id = ?;", (temple_id,)).fetchone()
            if row is None:
                return None
            return _row_to_temple(row)

    def list_temples(self) -> list[Temple]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM Temples ORDER BY id ASC;").fetchall()
            return [_row_to_temple(row) for row in rows]

    def update_temple_occupancy(
        self,
        temple_id: int,
        current_occupancy: int,
        updated_at: datetime,
        connection: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self.transaction(connection) as conn:
            conn.execute(
                """
                UPDATE Temples
                SET current_occupancy = ?, updated_at = ?
                WHERE id = ?;
                """,
                (current_occupancy, _to_iso(updated_at), temple_id),
            )

    # ------------------------------------------------------------------
    # Slots (booked_count is written only by CapacityLedger)
    # ------------------------------------------------------------------

    def insert_slots(
        self,
        slots: Iterable[SlotInsert],
        connection: Optional[sqlite3.Connection] = None,
    ) -> list[int]:
        """Insert slots in one transaction and return their ids in order."""
        slot_ids: list[int] = []
        with self.transaction(connection) as conn:
            for slot in slots:
                event = slot.special_event
                cursor = conn.execute(
                    """
                    INSERT INTO Slots (
                        temple_id, date, start_time, end_time, capacity, price,
                        special_event_name, special_event_description,
                        special_event_additional_price
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        slot.temple_id,
                        slot.date.isoformat(),
                        slot.start_time,
                        slot.end_time,
                        slot.capacity,
                        slot.price,
                        event.name if event else None,
                        event.description if event else None,
                        event.additional_price if event else 0.0,
                    ),
                )
                slot_ids.append(int(cursor.lastrowid))
        return slot_ids

    def get_slot(
        self,
        slot_id: int,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Slot]:
        with self._reader(connection) as conn:
            row = conn.execute("SELECT * FROM Slots WHERE id = ?;", (slot_id,)).fetchone()
            if row is None:
                return None
            return _row_to_slot(row)

    def find_overlapping_slot(
        self,
        temple_id: int,
        slot_date: date,
        start_time: str,
        end_time: str,
        exclude_slot_id: Optional[int] = None,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Slot]:
        """Return an active slot on the same day whose window intersects [start, end)."""
        with self._reader(connection) as conn:
            row = conn.execute(
                """
                SELECT *
                FROM Slots
                WHERE temple_id = ?
                  AND date = ?
                  AND is_active = 1
                  AND start_time < ?
                  AND end_time > ?
                  AND id != ?
                ORDER BY start_time ASC
                LIMIT 1;
                """,
                (
                    temple_id,
                    slot_date.isoformat(),
                    end_time,
                    start_time,
                    exclude_slot_id if exclude_slot_id is not None else -1,
                ),
            ).fetchone()
            if row is None:
                return None
            return _row_to_slot(row)

    def list_active_slots(
        self,
        temple_id: int,
        start_date: date,
        end_date: date,
    ) -> list[Slot]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM Slots
                WHERE temple_id = ?
                  AND is_active = 1
                  AND date >= ?
                  AND date <= ?
                ORDER BY date ASC, start_time ASC;
                """,
                (temple_id, start_date.isoformat(), end_date.isoformat()),
            ).fetchall()
            return [_row_to_slot(row) for row in rows]

    def update_slot_settings(
        self,
        connection: sqlite3.Connection,
        slot_id: int,
        *,
        capacity: int,
        price: float,
        status: SlotStatus,
        special_event: Optional[SpecialEvent],
    ) -> bool:
        """Write operator-editable slot fields; refuses capacity below booked seats."""
        cursor = connection.execute(
            """
            UPDATE Slots
            SET capacity = ?,
                price = ?,
                status = ?,
                special_event_name = ?,
                special_event_description = ?,
                special_event_additional_price = ?
            WHERE id = ? AND booked_count <= ?;
            """,
            (
                capacity,
                price,
                status.value,
                special_event.name if special_event else None,
                special_event.description if special_event else None,
                special_event.additional_price if special_event else 0.0,
                slot_id,
                capacity,
            ),
        )
        return cursor.rowcount == 1

    def deactivate_slot(self, slot_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE Slots SET is_active = 0 WHERE id = ?;",
                (slot_id,),
            )
            return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def insert_booking(
        self,
        *,
        booking_code: str,
        user_id: str,
        user_name: str,
        temple_id: int,
        slot_id: int,
        visitors: Sequence[Visitor],
        contact_email: str,
        contact_phone: str,
        total_amount: float,
        payment_status: PaymentStatus,
        status: BookingStatus,
        qr_code: str,
        special_requests: Sequence[str],
        created_at: datetime,
        connection: Optional[sqlite3.Connection] = None,
    ) -> int:
        try:
            with self._reader(connection) as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO Bookings (
                        booking_code, user_id, user_name, temple_id, slot_id,
                        visitors_count, visitors_json, contact_email, contact_phone,
                        total_amount, payment_status, status, qr_code,
                        special_requests_json, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        booking_code,
                        user_id,
                        user_name,
                        temple_id,
                        slot_id,
                        len(visitors),
                        json.dumps([visitor.to_dict() for visitor in visitors]),
                        contact_email,
                        contact_phone,
                        total_amount,
                        payment_status.value,
                        status.value,
                        qr_code,
                        json.dumps(list(special_requests)),
                        _to_iso(created_at),
                        _to_iso(created_at),
                    ),
                )
                return int(cursor.lastrowid)
        except sqlite3.IntegrityError as exc:
            if "booking_code" in str(exc):
                raise BookingCodeConflictError(
                    f"booking code {booking_code} already exists"
                ) from exc
            raise

    def get_booking(
        self,
        booking_id: int,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Booking]:
        with self._reader(connection) as conn:
            row = conn.execute("SELECT * FROM Bookings WHERE id = ?;", (booking_id,)).fetchone()
            if row is None:
                return None
            return _row_to_booking(row)

    def get_booking_by_code(self, booking_code: str) -> Optional[Booking]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM Bookings WHERE booking_code = ?;",
                (booking_code,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_booking(row)

    def list_bookings_for_user(
        self,
        user_id: str,
        status: Optional[BookingStatus],
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        """Return one page of a user's bookings (newest first) and the total count."""
        filters = ["user_id = ?"]
        params: list[Any] = [user_id]
        if status is not None:
            filters.append("status = ?")
            params.append(status.value)
        where_clause = " AND ".join(filters)
        with self._connect() as conn:
            total = int(
                conn.execute(
                    f"SELECT COUNT(*) AS count FROM Bookings WHERE {where_clause};",
                    tuple(params),
                ).fetchone()["count"]
            )
            rows = conn.execute(
                f"""
                SELECT *
                FROM Bookings
                WHERE {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?;
                """,
                (*params, limit, offset),
            ).fetchall()
            return [_row_to_booking(row) for row in rows], total

    def mark_booking_cancelled(
        self,
        connection: sqlite3.Connection,
        booking_id: int,
        updated_at: datetime,
    ) -> bool:
        """Flip a confirmed booking to cancelled; False if it was not confirmed."""
        cursor = connection.execute(
            """
            UPDATE Bookings
            SET status = 'cancelled', updated_at = ?
            WHERE id = ? AND status = 'confirmed';
            """,
            (_to_iso(updated_at), booking_id),
        )
        return cursor.rowcount == 1

    def record_check_in(self, booking_id: int, check_in: CheckIn) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE Bookings
                SET check_in_time = ?,
                    check_in_latitude = ?,
                    check_in_longitude = ?,
                    check_in_verified_by = ?,
                    updated_at = ?
                WHERE id = ? AND status = 'confirmed' AND check_in_time IS NULL;
                """,
                (
                    _to_iso(check_in.time),
                    check_in.latitude,
                    check_in.longitude,
                    check_in.verified_by,
                    _to_iso(check_in.time),
                    booking_id,
                ),
            )
            return cursor.rowcount == 1

    def record_check_out(self, booking_id: int, check_out: CheckOut) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE Bookings
                SET check_out_time = ?,
                    check_out_rating = ?,
                    check_out_comment = ?,
                    status = 'completed',
                    updated_at = ?
                WHERE id = ? AND check_in_time IS NOT NULL AND check_out_time IS NULL;
                """,
                (
                    _to_iso(check_out.time),
                    check_out.rating,
                    check_out.comment,
                    _to_iso(check_out.time),
                    booking_id,
                ),
            )
            return cursor.rowcount == 1

    def list_bookings_for_analytics(self, since: datetime) -> list[BookingAnalyticsRecord]:
        """Load bookings created since `since`, joined with slot and temple data."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT
                    b.id,
                    b.temple_id,
                    t.name AS temple_name,
                    t.city,
                    b.created_at,
                    s.start_time,
                    b.visitors_count,
                    b.total_amount,
                    b.status,
                    b.check_out_rating
                FROM Bookings AS b
                INNER JOIN Slots AS s ON s.id = b.slot_id
                INNER JOIN Temples AS t ON t.id = b.temple_id
                WHERE b.created_at >= ?
                ORDER BY b.created_at ASC, b.id ASC;
                """,
                (_to_iso(since),),
            ).fetchall()
            return [
                BookingAnalyticsRecord(
                    booking_id=int(row["id"]),
                    temple_id=int(row["temple_id"]),
                    temple_name=str(row["temple_name"]),
                    city=str(row["city"]),
                    created_at=str(row["created_at"]),
                    start_time=str(row["start_time"]),
                    visitors_count=int(row["visitors_count"]),
                    total_amount=float(row["total_amount"]),
                    status=str(row["status"]),
                    rating=row["check_out_rating"],
                )
                for row in rows
            ]

    def count_bookings(self, slot_id: Optional[int] = None) -> int:
        with self._connect() as conn:
            if slot_id is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM Bookings;").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM Bookings WHERE slot_id = ?;",
                    (slot_id,),
                ).fetchone()
            return int(row["count"])

    # ------------------------------------------------------------------
    # Crowd simulations and alerts
    # ------------------------------------------------------------------

    def get_simulation(
        self,
        temple_id: int,
        simulation_date: date,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[CrowdSimulation]:
        with self._reader(connection) as conn:
            row = conn.execute(
                """
                SELECT *
                FROM CrowdSimulations
                WHERE temple_id = ? AND date = ? AND is_active = 1;
                """,
                (temple_id, simulation_date.isoformat()),
            ).fetchone()
            if row is None:
                return None
            simulation_id = int(row["id"])
            hourly_rows = conn.execute(
                "SELECT * FROM HourlyCrowd WHERE simulation_id = ? ORDER BY hour ASC;",
                (simulation_id,),
            ).fetchall()
            alert_rows = conn.execute(
                "SELECT * FROM Alerts WHERE simulation_id = ? ORDER BY id ASC;",
                (simulation_id,),
            ).fetchall()
            weather = None
            if row["weather_json"]:
                weather_data = json.loads(row["weather_json"])
                weather = WeatherImpact(**weather_data)
            peak_hours = tuple(PeakHour(**item) for item in json.loads(row["peak_hours_json"]))
            return CrowdSimulation(
                simulation_id=simulation_id,
                temple_id=int(row["temple_id"]),
                date=date.fromisoformat(str(row["date"])),
                hourly={
                    record.hour: record
                    for record in (_row_to_hourly(item) for item in hourly_rows)
                },
                alerts={
                    alert.alert_id: alert
                    for alert in (_row_to_alert(item) for item in alert_rows)
                },
                peak_hours=peak_hours,
                weather=weather,
            )

    def create_simulation(
        self,
        connection: sqlite3.Connection,
        temple_id: int,
        simulation_date: date,
        records: Sequence[HourlyCrowdRecord],
        peak_hours: Sequence[PeakHour],
        weather: Optional[WeatherImpact],
    ) -> Optional[int]:
        """Insert a day's simulation; returns None if one already exists."""
        cursor = connection.execute(
            """
            INSERT OR IGNORE INTO CrowdSimulations (temple_id, date, peak_hours_json, weather_json)
            VALUES (?, ?, ?, ?);
            """,
            (
                temple_id,
                simulation_date.isoformat(),
                json.dumps(
                    [
                        {
                            "start_hour": peak.start_hour,
                            "end_hour": peak.end_hour,
                            "expected_crowd": peak.expected_crowd,
                            "reason": peak.reason,
                        }
                        for peak in peak_hours
                    ]
                ),
                json.dumps(weather.to_dict()) if weather else None,
            ),
        )
        if cursor.rowcount == 0:
            return None
        simulation_id = int(cursor.lastrowid)
        for record in records:
            self.upsert_hourly_record(connection, simulation_id, record)
        return simulation_id

    def upsert_hourly_record(
        self,
        connection: sqlite3.Connection,
        simulation_id: int,
        record: HourlyCrowdRecord,
    ) -> None:
        connection.execute(
            """
            INSERT INTO HourlyCrowd (
                simulation_id, hour, expected_visitors, actual_visitors,
                crowd_density, wait_time, areas_json
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (simulation_id, hour) DO UPDATE SET
                expected_visitors = excluded.expected_visitors,
                actual_visitors = excluded.actual_visitors,
                crowd_density = excluded.crowd_density,
                wait_time = excluded.wait_time,
                areas_json = excluded.areas_json;
            """,
            (
                simulation_id,
                record.hour,
                record.expected_visitors,
                record.actual_visitors,
                record.crowd_density.value,
                record.wait_time,
                _areas_to_json(record.areas),
            ),
        )

    def update_weather(
        self,
        connection: sqlite3.Connection,
        simulation_id: int,
        weather: WeatherImpact,
    ) -> None:
        connection.execute(
            "UPDATE CrowdSimulations SET weather_json = ? WHERE id = ?;",
            (json.dumps(weather.to_dict()), simulation_id),
        )

    def list_active_alerts(
        self,
        connection: sqlite3.Connection,
        simulation_id: int,
    ) -> list[Alert]:
        rows = connection.execute(
            """
            SELECT *
            FROM Alerts
            WHERE simulation_id = ? AND is_active = 1 AND resolved_at IS NULL
            ORDER BY id ASC;
            """,
            (simulation_id,),
        ).fetchall()
        return [_row_to_alert(row) for row in rows]

    def insert_alert(
        self,
        connection: sqlite3.Connection,
        simulation_id: int,
        *,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        affected_areas: Sequence[str],
        created_at: datetime,
    ) -> Alert:
        cursor = connection.execute(
            """
            INSERT INTO Alerts (
                simulation_id, alert_type, severity, message,
                affected_areas_json, is_active, created_at
            )
            VALUES (?, ?, ?, ?, ?, 1, ?);
            """,
            (
                simulation_id,
                alert_type.value,
                severity.value,
                message,
                json.dumps(list(affected_areas)),
                _to_iso(created_at),
            ),
        )
        return Alert(
            alert_id=int(cursor.lastrowid),
            simulation_id=simulation_id,
            alert_type=alert_type,
            severity=severity,
            message=message,
            affected_areas=tuple(affected_areas),
            is_active=True,
            created_at=created_at.replace(microsecond=0),
        )

    def get_alert_for_temple(
        self,
        temple_id: int,
        alert_id: int,
        connection: Optional[sqlite3.Connection] = None,
    ) -> Optional[Alert]:
        with self._reader(connection) as conn:
            row = conn.execute(
                """
                SELECT a.*
                FROM Alerts AS a
                INNER JOIN CrowdSimulations AS cs ON cs.id = a.simulation_id
                WHERE a.id = ? AND cs.temple_id = ?;
                """,
                (alert_id, temple_id),
            ).fetchone()
            if row is None:
                return None
            return _row_to_alert(row)

    def mark_alert_resolved(
        self,
        connection: sqlite3.Connection,
        alert_id: int,
        resolved_at: datetime,
    ) -> bool:
        """Resolve an active alert once; False if it was already resolved."""
        cursor = connection.execute(
            """
            UPDATE Alerts
            SET is_active = 0, resolved_at = ?
            WHERE id = ? AND is_active = 1 AND resolved_at IS NULL;
            """,
            (_to_iso(resolved_at), alert_id),
        )
        return cursor.rowcount == 1

    def count_alerts(self, temple_id: int, active_only: bool = False) -> int:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT COUNT(*) AS count
                FROM Alerts AS a
                INNER JOIN CrowdSimulations AS cs ON cs.id = a.simulation_id
                WHERE cs.temple_id = ?
                {"AND a.is_active = 1" if active_only else ""};
                """,
                (temple_id,),
            ).fetchone()
            return int(row["count"])

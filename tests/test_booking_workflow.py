from __future__ import annotations

import itertools
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, datetime

import pytest

from backend.domain.errors import (
    NotCancellableError,
    NotFoundError,
    QrEncodingError,
    SlotUnavailableError,
    TransientError,
    ValidationError,
)
from backend.domain.models import (
    BookingStatus,
    Identity,
    PaymentStatus,
    Role,
    SlotStatus,
    SpecialEvent,
    Visitor,
)
from backend.repository.data_repository import DataRepository, SlotInsert
from backend.services.booking_service import (
    BookingService,
    compute_total_amount,
    generate_booking_code,
    to_base36,
)
from backend.services.capacity_ledger import CapacityLedger
from backend.services.qr_service import QrCodeService, QrPayload
from backend.utils.config import get_settings


SLOT_DATE = date(2030, 1, 1)
PILGRIM = Identity(user_id="pilgrim-1", role=Role.PILGRIM, name="Asha Rao", email="asha@example.com")
OTHER_PILGRIM = Identity(user_id="pilgrim-2", role=Role.PILGRIM, name="Ravi Shah")
ADMIN = Identity(user_id="admin", role=Role.ADMIN, name="Administrator")


class StubQrService:
    """Deterministic QR output so tests do not depend on image rendering."""

    def encode(self, payload: QrPayload) -> str:
        return f"data:image/png;base64,{payload.booking_code}"


class FailingQrService:
    def encode(self, payload: QrPayload) -> str:
        raise QrEncodingError("Failed to generate QR code: encoder offline")


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _build_test_settings(tmp_path, filename: str):
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        database_timeout_seconds=30.0,
    )


def _visitors(count: int) -> list[Visitor]:
    return [Visitor(name=f"Visitor {index}", age=30 + index, gender="male") for index in range(count)]


def _setup(
    tmp_path,
    qr_service=None,
    clock: Clock | None = None,
    code_factory=None,
    capacity: int = 10,
    price: float = 20.0,
    special_event: SpecialEvent | None = None,
):
    settings = _build_test_settings(tmp_path, "bookings.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    temple_id = repository.create_temple("Booking Temple", "Testville", 22.0, 70.0, capacity)
    (slot_id,) = repository.insert_slots(
        [
            SlotInsert(
                temple_id=temple_id,
                date=SLOT_DATE,
                start_time="10:00",
                end_time="10:30",
                capacity=capacity,
                price=price,
                special_event=special_event,
            )
        ]
    )
    ledger = CapacityLedger(repository)
    clock = clock or Clock(datetime(2029, 12, 31, 12, 0))
    service = BookingService(
        repository=repository,
        ledger=ledger,
        qr_service=qr_service or StubQrService(),
        settings=settings,
        clock=clock,
        code_factory=code_factory,
    )
    return repository, ledger, service, slot_id, clock


def test_booking_code_format():
    code = generate_booking_code("TCM", datetime(2030, 1, 1, 10, 0))
    assert code.startswith("TCM")
    assert re.fullmatch(r"TCM[0-9A-Z]+", code)
    assert code[3:-5] == to_base36(int(datetime(2030, 1, 1, 10, 0).timestamp() * 1000)).upper()


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"


def test_booking_fills_last_seats_and_marks_slot_full(tmp_path):
    repository, ledger, service, slot_id, _ = _setup(tmp_path)
    ledger.reserve(slot_id, 8)

    booking = service.create_booking(PILGRIM, slot_id, 2, _visitors(2), ["  wheelchair  ", " "])

    slot = repository.get_slot(slot_id)
    assert booking.total_amount == 40.0
    assert booking.status is BookingStatus.CONFIRMED
    assert booking.payment_status is PaymentStatus.COMPLETED
    assert booking.special_requests == ("wheelchair",)
    assert booking.qr_code == f"data:image/png;base64,{booking.booking_code}"
    assert booking.contact_email == "asha@example.com"
    assert slot.booked_count == 10
    assert slot.status is SlotStatus.FULL


def test_total_amount_includes_special_event_surcharge(tmp_path):
    _, _, service, slot_id, _ = _setup(
        tmp_path,
        special_event=SpecialEvent(name="Aarti", additional_price=5.5),
    )
    booking = service.create_booking(PILGRIM, slot_id, 3, _visitors(3))
    assert booking.total_amount == pytest.approx(76.5)


def test_booking_more_seats_than_available_is_refused(tmp_path):
    repository, ledger, service, slot_id, _ = _setup(tmp_path)
    ledger.reserve(slot_id, 9)

    with pytest.raises(SlotUnavailableError, match="Only 1 spots available"):
        service.create_booking(PILGRIM, slot_id, 2, _visitors(2))

    assert repository.get_slot(slot_id).booked_count == 9
    assert repository.count_bookings(slot_id) == 0


def test_concurrent_bookings_for_last_seat_admit_exactly_one(tmp_path):
    repository, ledger, service, slot_id, _ = _setup(tmp_path)
    ledger.reserve(slot_id, 9)

    def attempt(index: int) -> bool:
        identity = Identity(user_id=f"pilgrim-{index}", role=Role.PILGRIM, name=f"Pilgrim {index}")
        try:
            service.create_booking(identity, slot_id, 1, _visitors(1))
        except SlotUnavailableError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(attempt, range(6)))

    assert sum(outcomes) == 1
    assert repository.get_slot(slot_id).booked_count == 10
    assert repository.count_bookings(slot_id) == 1


def test_started_slot_cannot_be_booked(tmp_path):
    _, _, service, slot_id, _ = _setup(tmp_path, clock=Clock(datetime(2030, 1, 1, 10, 0)))
    with pytest.raises(SlotUnavailableError, match="already started"):
        service.create_booking(PILGRIM, slot_id, 1, _visitors(1))


def test_visitor_list_must_match_count(tmp_path):
    repository, _, service, slot_id, _ = _setup(tmp_path)
    with pytest.raises(ValidationError):
        service.create_booking(PILGRIM, slot_id, 2, _visitors(1))
    assert repository.get_slot(slot_id).booked_count == 0


def test_unknown_slot_raises_not_found(tmp_path):
    _, _, service, _, _ = _setup(tmp_path)
    with pytest.raises(NotFoundError):
        service.create_booking(PILGRIM, 9999, 1, _visitors(1))


def test_qr_failure_holds_no_seats(tmp_path):
    repository, _, service, slot_id, _ = _setup(tmp_path, qr_service=FailingQrService())

    with pytest.raises(QrEncodingError):
        service.create_booking(PILGRIM, slot_id, 3, _visitors(3))

    assert repository.get_slot(slot_id).booked_count == 0
    assert repository.count_bookings(slot_id) == 0


def test_booking_code_collision_retries_then_gives_up(tmp_path):
    codes = itertools.chain(["TCMDUP", "TCMDUP", "TCMFRESH"], itertools.repeat("TCMDUP"))
    repository, _, service, slot_id, _ = _setup(tmp_path, code_factory=lambda now: next(codes))

    first = service.create_booking(PILGRIM, slot_id, 1, _visitors(1))
    second = service.create_booking(PILGRIM, slot_id, 1, _visitors(1))
    assert (first.booking_code, second.booking_code) == ("TCMDUP", "TCMFRESH")

    with pytest.raises(TransientError):
        service.create_booking(PILGRIM, slot_id, 2, _visitors(2))
    assert repository.get_slot(slot_id).booked_count == 2


def test_cancel_releases_seats_and_reopens_full_slot(tmp_path):
    clock = Clock(datetime(2030, 1, 1, 7, 59, 59))
    repository, ledger, service, slot_id, _ = _setup(tmp_path, clock=clock)
    ledger.reserve(slot_id, 7)
    booking = service.create_booking(PILGRIM, slot_id, 3, _visitors(3))
    assert repository.get_slot(slot_id).status is SlotStatus.FULL

    cancelled = service.cancel_booking(booking.booking_id, PILGRIM)

    slot = repository.get_slot(slot_id)
    assert cancelled.status is BookingStatus.CANCELLED
    assert slot.booked_count == 7
    assert slot.status is SlotStatus.AVAILABLE


def test_cancel_exactly_two_hours_before_start_is_refused(tmp_path):
    clock = Clock(datetime(2030, 1, 1, 7, 0))
    repository, _, service, slot_id, _ = _setup(tmp_path, clock=clock)
    booking = service.create_booking(PILGRIM, slot_id, 2, _visitors(2))

    clock.now = datetime(2030, 1, 1, 8, 0, 0)
    with pytest.raises(NotCancellableError):
        service.cancel_booking(booking.booking_id, PILGRIM)

    assert repository.get_slot(slot_id).booked_count == 2
    assert service.get_booking(booking.booking_id, PILGRIM).status is BookingStatus.CONFIRMED


def test_cancel_twice_releases_once(tmp_path):
    repository, _, service, slot_id, _ = _setup(tmp_path)
    booking = service.create_booking(PILGRIM, slot_id, 2, _visitors(2))
    service.cancel_booking(booking.booking_id, PILGRIM)

    with pytest.raises(NotCancellableError):
        service.cancel_booking(booking.booking_id, PILGRIM)
    assert repository.get_slot(slot_id).booked_count == 0


def test_bookings_are_private_to_their_owner(tmp_path):
    _, _, service, slot_id, _ = _setup(tmp_path)
    booking = service.create_booking(PILGRIM, slot_id, 1, _visitors(1))

    with pytest.raises(NotFoundError):
        service.get_booking(booking.booking_id, OTHER_PILGRIM)
    with pytest.raises(NotFoundError):
        service.cancel_booking(booking.booking_id, OTHER_PILGRIM)
    assert service.get_booking(booking.booking_id, ADMIN).booking_id == booking.booking_id
    assert service.get_booking_by_code(booking.booking_code.lower(), PILGRIM).booking_id == booking.booking_id


def test_list_bookings_paginates_and_filters(tmp_path):
    _, _, service, slot_id, _ = _setup(tmp_path)
    created = [service.create_booking(PILGRIM, slot_id, 1, _visitors(1)) for _ in range(3)]
    service.cancel_booking(created[0].booking_id, PILGRIM)

    page = service.list_bookings(PILGRIM, page=1, limit=2)
    assert page.total == 3
    assert page.pages == 2
    assert len(page.bookings) == 2

    confirmed = service.list_bookings(PILGRIM, status=BookingStatus.CONFIRMED)
    assert confirmed.total == 2
    assert service.list_bookings(OTHER_PILGRIM).total == 0

    with pytest.raises(ValidationError):
        service.list_bookings(PILGRIM, limit=0)


def test_check_in_and_check_out_flow(tmp_path):
    _, _, service, slot_id, _ = _setup(tmp_path)
    booking = service.create_booking(PILGRIM, slot_id, 1, _visitors(1))

    with pytest.raises(ValidationError, match="checked in before checkout"):
        service.check_out(booking.booking_id, rating=5)

    checked_in = service.check_in(booking.booking_id, ADMIN, 22.0, 70.0)
    assert checked_in.check_in.verified_by == "admin"
    with pytest.raises(ValidationError, match="already checked in"):
        service.check_in(booking.booking_id, ADMIN)

    checked_out = service.check_out(booking.booking_id, rating=5, comment="  Smooth darshan ")
    assert checked_out.check_out.rating == 5
    assert checked_out.check_out.comment == "Smooth darshan"
    with pytest.raises(ValidationError, match="already checked out"):
        service.check_out(booking.booking_id)


def test_real_qr_service_produces_png_data_url():
    data_url = QrCodeService(box_size=2, border=1).encode(
        QrPayload(
            booking_code="TCMABC123",
            temple_name="Somnath Temple",
            date="2030-01-01",
            time_window="10:00 - 10:30",
            visitors=2,
            user_name="Asha Rao",
        )
    )
    assert data_url.startswith("data:image/png;base64,")


def test_compute_total_amount_rounds_to_cents(tmp_path):
    repository, _, _, slot_id, _ = _setup(tmp_path, price=10.333)
    assert compute_total_amount(repository.get_slot(slot_id), 3) == 31.0


class ObservingQrService:
    """Records what other readers can see of the slot while the QR is rendered."""

    def __init__(self) -> None:
        self.repository: DataRepository | None = None
        self.slot_id: int | None = None
        self.seen: list[tuple[int, int]] = []

    def encode(self, payload: QrPayload) -> str:
        slot = self.repository.get_slot(self.slot_id)
        self.seen.append((slot.booked_count, self.repository.count_bookings(self.slot_id)))
        return f"data:image/png;base64,{payload.booking_code}"


class ObservingLedger(CapacityLedger):
    """Reads the slot from a separate connection right after seats are reserved."""

    def __init__(self, repository: DataRepository) -> None:
        super().__init__(repository)
        self.seen: list[tuple[int, int]] = []

    def reserve(self, slot_id, seats, connection=None):
        result = super().reserve(slot_id, seats, connection)
        outside = self._repository.get_slot(slot_id)
        self.seen.append((outside.booked_count, self._repository.count_bookings(slot_id)))
        return result


def test_seats_and_booking_row_become_visible_together(tmp_path):
    observer = ObservingQrService()
    repository, _, service, slot_id, _ = _setup(tmp_path, qr_service=observer)
    observer.repository, observer.slot_id = repository, slot_id

    service.create_booking(PILGRIM, slot_id, 3, _visitors(3))

    assert observer.seen == [(0, 0)]
    assert repository.get_slot(slot_id).booked_count == 3
    assert repository.count_bookings(slot_id) == 1


def test_uncommitted_reservation_is_hidden_from_other_readers(tmp_path):
    repository, _, _, slot_id, clock = _setup(tmp_path)
    ledger = ObservingLedger(repository)
    service = BookingService(
        repository=repository,
        ledger=ledger,
        qr_service=StubQrService(),
        settings=_build_test_settings(tmp_path, "bookings.db"),
        clock=clock,
    )

    service.create_booking(PILGRIM, slot_id, 2, _visitors(2))

    assert ledger.seen == [(0, 0)]
    assert (repository.get_slot(slot_id).booked_count, repository.count_bookings(slot_id)) == (2, 1)


class StatusChangingQrService:
    """Lets an admin change land between the first bookability check and the write."""

    def __init__(self, change) -> None:
        self.change = change

    def encode(self, payload: QrPayload) -> str:
        self.change()
        return f"data:image/png;base64,{payload.booking_code}"


def test_slot_moved_to_maintenance_mid_booking_is_refused(tmp_path):
    holder: dict = {}

    def to_maintenance() -> None:
        repository, slot_id = holder["repository"], holder["slot_id"]
        with repository.transaction() as conn:
            repository.update_slot_settings(
                conn,
                slot_id,
                capacity=10,
                price=20.0,
                status=SlotStatus.MAINTENANCE,
                special_event=None,
            )

    repository, _, service, slot_id, _ = _setup(tmp_path, qr_service=StatusChangingQrService(to_maintenance))
    holder.update(repository=repository, slot_id=slot_id)

    with pytest.raises(SlotUnavailableError):
        service.create_booking(PILGRIM, slot_id, 2, _visitors(2))

    slot = repository.get_slot(slot_id)
    assert slot.status is SlotStatus.MAINTENANCE
    assert slot.booked_count == 0
    assert repository.count_bookings(slot_id) == 0


def test_slot_deleted_mid_booking_is_refused(tmp_path):
    holder: dict = {}
    qr_service = StatusChangingQrService(lambda: holder["repository"].deactivate_slot(holder["slot_id"]))
    repository, _, service, slot_id, _ = _setup(tmp_path, qr_service=qr_service)
    holder.update(repository=repository, slot_id=slot_id)

    with pytest.raises(NotFoundError):
        service.create_booking(PILGRIM, slot_id, 2, _visitors(2))

    assert repository.get_slot(slot_id).booked_count == 0
    assert repository.count_bookings(slot_id) == 0


def test_visitor_limit_is_fixed_at_ten(tmp_path, monkeypatch):
    monkeypatch.setenv("BOOKING_MAX_VISITORS", "50")
    get_settings.cache_clear()
    try:
        assert get_settings().booking_max_visitors == 10
        repository, _, service, slot_id, _ = _setup(tmp_path, capacity=20)
        with pytest.raises(ValidationError):
            service.create_booking(PILGRIM, slot_id, 11, _visitors(11))
        assert repository.get_slot(slot_id).booked_count == 0
    finally:
        get_settings.cache_clear()

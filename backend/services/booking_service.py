"""Booking creation, cancellation and visit tracking.

The QR code is rendered before any seat is held. The seat reservation and the
booking row are then written in one transaction, so other readers never see
a raised `booked_count` without the booking that holds it.
"""

from __future__ import annotations

import math
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from backend.domain.constraints import BookingLimits, validate_rating, validate_visitors
from backend.domain.errors import (
    BookingCodeConflictError,
    CapacityExceededError,
    NotCancellableError,
    NotFoundError,
    SlotUnavailableError,
    TransientError,
    ValidationError,
)
from backend.domain.models import (
    Booking,
    BookingStatus,
    CheckIn,
    CheckOut,
    Identity,
    PaymentStatus,
    Slot,
    Visitor,
)
from backend.repository.data_repository import DataRepository
from backend.services.broadcast_service import BroadcastHub
from backend.services.capacity_ledger import CapacityLedger, LedgerResult
from backend.services.qr_service import QrCodeService, QrPayload
from backend.services.slot_lifecycle import can_cancel, is_bookable, unbookable_reason
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger, log_event


logger = get_logger(__name__)

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding expects a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_booking_code(prefix: str, now: datetime) -> str:
    """Prefix + base36 epoch milliseconds + five random base36 characters, upper-cased."""
    timestamp = to_base36(int(now.timestamp() * 1000))
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(5))
    return f"{prefix}{timestamp}{suffix}".upper()


def compute_total_amount(slot: Slot, visitors_count: int) -> float:
    return round(slot.price * visitors_count + slot.additional_price * visitors_count, 2)


@dataclass(frozen=True)
class BookingPage:
    bookings: list[Booking]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class BookingService:
    """Orchestrates the booking lifecycle against the capacity ledger."""

    def __init__(
        self,
        repository: DataRepository,
        ledger: CapacityLedger,
        qr_service: QrCodeService,
        broadcast_hub: Optional[BroadcastHub] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        code_factory: Optional[Callable[[datetime], str]] = None,
    ) -> None:
        self._repository = repository
        self._ledger = ledger
        self._qr_service = qr_service
        self._broadcast_hub = broadcast_hub
        self._settings = settings or get_settings()
        self._clock = clock or datetime.now
        self._code_factory = code_factory or (
            lambda now: generate_booking_code(self._settings.booking_code_prefix, now)
        )
        self._limits = BookingLimits(
            min_visitors=self._settings.booking_min_visitors,
            max_visitors=self._settings.booking_max_visitors,
        )

    def create_booking(
        self,
        identity: Identity,
        slot_id: int,
        visitors_count: int,
        visitors: Sequence[Visitor],
        special_requests: Sequence[str] = (),
    ) -> Booking:
        slot = self._repository.get_slot(slot_id)
        if slot is None or not slot.is_active:
            raise NotFoundError("Slot not found")

        validate_visitors(visitors_count, visitors, self._limits)

        now = self._clock()
        self._require_bookable(slot, visitors_count, now)
        temple = self._repository.get_temple(slot.temple_id)
        if temple is None:
            raise NotFoundError("Temple not found")

        total_amount = compute_total_amount(slot, visitors_count)
        requests = [item.strip() for item in special_requests if item.strip()]

        for attempt in range(1, self._settings.booking_code_max_attempts + 1):
            booking_code = self._code_factory(now)
            qr_code = self._qr_service.encode(
                QrPayload(
                    booking_code=booking_code,
                    temple_name=temple.name,
                    date=slot.date.isoformat(),
                    time_window=f"{slot.start_time} - {slot.end_time}",
                    visitors=len(visitors),
                    user_name=identity.name,
                )
            )
            try:
                booking_id, reservation = self._reserve_and_insert(
                    identity=identity,
                    slot_id=slot_id,
                    visitors=visitors,
                    booking_code=booking_code,
                    qr_code=qr_code,
                    special_requests=requests,
                    total_amount=total_amount,
                    now=now,
                )
            except BookingCodeConflictError:
                logger.warning(
                    "Booking code collision | code=%s | attempt=%s",
                    booking_code,
                    attempt,
                )
                continue

            log_event(
                logger,
                "Booking created",
                booking_code=booking_code,
                slot_id=slot_id,
                visitors=visitors_count,
                total_amount=total_amount,
            )
            self._publish_slot_status(reservation)
            return self._require_booking(booking_id)

        raise TransientError("Could not allocate a unique booking code; please retry")

    def _require_bookable(self, slot: Slot, visitors_count: int, now: datetime) -> None:
        if not is_bookable(slot, visitors_count, now):
            raise SlotUnavailableError(
                "Slot is not available for the requested number of visitors: "
                f"{unbookable_reason(slot, visitors_count, now)}"
            )

    def _reserve_and_insert(
        self,
        identity: Identity,
        slot_id: int,
        visitors: Sequence[Visitor],
        booking_code: str,
        qr_code: str,
        special_requests: Sequence[str],
        total_amount: float,
        now: datetime,
    ) -> tuple[int, LedgerResult]:
        """Reserve seats and insert the booking row in one write transaction.

        The slot is read again under the write lock, so a status change or soft
        delete that landed after the first check refuses the booking. Any
        failure rolls back the reservation together with the row.
        """
        with self._repository.transaction() as conn:
            current = self._repository.get_slot(slot_id, conn)
            if current is None or not current.is_active:
                raise NotFoundError("Slot not found")
            self._require_bookable(current, len(visitors), now)
            try:
                reservation = self._ledger.reserve(slot_id, len(visitors), conn)
            except CapacityExceededError as exc:
                raise SlotUnavailableError(
                    "Slot is not available for the requested number of visitors"
                ) from exc
            booking_id = self._repository.insert_booking(
                booking_code=booking_code,
                user_id=identity.user_id,
                user_name=identity.name,
                temple_id=current.temple_id,
                slot_id=slot_id,
                visitors=visitors,
                contact_email=identity.email,
                contact_phone=identity.phone,
                total_amount=total_amount,
                payment_status=PaymentStatus.COMPLETED,
                status=BookingStatus.CONFIRMED,
                qr_code=qr_code,
                special_requests=special_requests,
                created_at=now,
                connection=conn,
            )
        return booking_id, reservation

    def cancel_booking(self, booking_id: int, identity: Identity) -> Booking:
        now = self._clock()
        with self._repository.transaction() as conn:
            booking = self._repository.get_booking(booking_id, conn)
            if booking is None or not self._can_access(booking, identity):
                raise NotFoundError("Booking not found")
            slot = self._repository.get_slot(booking.slot_id, conn)
            if slot is None:
                raise NotFoundError("Slot not found")
            if not can_cancel(booking, slot, now):
                raise NotCancellableError(
                    "Booking cannot be cancelled. Cancellation is allowed up to "
                    "2 hours before the slot time."
                )
            if not self._repository.mark_booking_cancelled(conn, booking_id, now):
                raise NotCancellableError("Only confirmed bookings can be cancelled")
            release = self._ledger.release(booking.slot_id, booking.visitors_count, conn)

        log_event(
            logger,
            "Booking cancelled",
            booking_id=booking_id,
            slot_id=booking.slot_id,
            visitors=booking.visitors_count,
            by=identity.role.value,
        )
        self._publish_slot_status(release)
        return self._require_booking(booking_id)

    def list_bookings(
        self,
        identity: Identity,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> BookingPage:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= limit <= self._settings.booking_page_size_limit:
            raise ValidationError(
                f"limit must be between 1 and {self._settings.booking_page_size_limit}"
            )
        bookings, total = self._repository.list_bookings_for_user(
            identity.user_id,
            status,
            limit,
            (page - 1) * limit,
        )
        return BookingPage(bookings=bookings, total=total, page=page, limit=limit)

    def get_booking(self, booking_id: int, identity: Identity) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None or not self._can_access(booking, identity):
            raise NotFoundError("Booking not found")
        return booking

    def get_booking_by_code(self, booking_code: str, identity: Identity) -> Booking:
        booking = self._repository.get_booking_by_code(booking_code.strip().upper())
        if booking is None or not self._can_access(booking, identity):
            raise NotFoundError("Booking not found")
        return booking

    def check_in(
        self,
        booking_id: int,
        verifier: Identity,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if booking.status is not BookingStatus.CONFIRMED:
            raise ValidationError("Only confirmed bookings can be checked in")
        if booking.check_in is not None:
            raise ValidationError("Booking is already checked in")

        check_in = CheckIn(
            time=self._clock(),
            verified_by=verifier.user_id,
            latitude=latitude,
            longitude=longitude,
        )
        if not self._repository.record_check_in(booking_id, check_in):
            raise ValidationError("Booking is already checked in")
        log_event(logger, "Booking checked in", booking_id=booking_id, verified_by=verifier.user_id)
        return self._require_booking(booking_id)

    def check_out(
        self,
        booking_id: int,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if booking.check_in is None:
            raise ValidationError("Booking must be checked in before checkout")
        if booking.check_out is not None:
            raise ValidationError("Booking is already checked out")
        validate_rating(rating, comment, self._settings.checkout_comment_max_length)

        check_out = CheckOut(
            time=self._clock(),
            rating=rating,
            comment=comment.strip() if comment else None,
        )
        if not self._repository.record_check_out(booking_id, check_out):
            raise ValidationError("Booking is already checked out")
        log_event(logger, "Booking checked out", booking_id=booking_id, rating=rating)
        return self._require_booking(booking_id)

    @staticmethod
    def _can_access(booking: Booking, identity: Identity) -> bool:
        return identity.is_admin or booking.user_id == identity.user_id

    def _require_booking(self, booking_id: int) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    def _publish_slot_status(self, result: LedgerResult) -> None:
        if self._broadcast_hub is None or not result.status_changed:
            return
        self._broadcast_hub.publish(
            result.temple_id,
            "slot_status",
            {
                "slotId": result.slot_id,
                "status": result.status.value,
                "bookedCount": result.booked_count,
                "availableSpots": result.available_spots,
                "capacity": result.capacity,
            },
        )

"""Error taxonomy shared by the booking, ledger and crowd services."""

from __future__ import annotations


class TempleServiceError(Exception):
    """Base exception for every business failure raised by the services."""


class ValidationError(TempleServiceError):
    """Raised when caller input is malformed or out of range."""


class NotFoundError(TempleServiceError):
    """Raised when a slot, booking, temple or alert is absent or inactive."""


class SlotUnavailableError(TempleServiceError):
    """Raised when a slot cannot accept the requested booking."""


class NotCancellableError(TempleServiceError):
    """Raised when a booking is past the cancellation cutoff or not confirmed."""


class CapacityExceededError(TempleServiceError):
    """Raised by the capacity ledger when an atomic reservation is refused."""

    def __init__(self, slot_id: int, seats: int) -> None:
        super().__init__(f"slot_id {slot_id} cannot take {seats} more seat(s)")
        self.slot_id = slot_id
        self.seats = seats


class TransientError(TempleServiceError):
    """Raised when the backing store is busy or unreachable; safe to retry."""


class QrEncodingError(TempleServiceError):
    """Raised when the QR payload for a booking cannot be produced."""


class BookingCodeConflictError(TempleServiceError):
    """Raised when a generated booking code collides with an existing one."""

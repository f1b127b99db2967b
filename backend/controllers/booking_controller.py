"""HTTP controller layer for pilgrim bookings and visit check-in."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from backend.controllers.dependencies import get_booking_service, get_identity, require_admin
from backend.controllers.envelope import ApiResponse, to_http_exception
from backend.domain.errors import TempleServiceError
from backend.domain.models import Booking, BookingStatus, Identity, Visitor
from backend.services.booking_service import BookingService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])


class VisitorRequest(BaseModel):
    name: str
    age: int = Field(ge=0, le=120)
    gender: str
    id_type: Optional[str] = None
    id_number: Optional[str] = None


class CreateBookingRequest(BaseModel):
    slot_id: int = Field(gt=0)
    visitors_count: int
    visitors: list[VisitorRequest]
    special_requests: list[str] = Field(default_factory=list)


class CheckInRequest(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)


class CheckOutRequest(BaseModel):
    rating: Optional[int] = None
    comment: Optional[str] = None


class BookingResponse(BaseModel):
    id: int
    booking_code: str
    user_id: str
    user_name: str
    temple_id: int
    slot_id: int
    visitors_count: int
    visitors: list[dict[str, Any]]
    contact_email: str
    contact_phone: str
    total_amount: float
    payment_status: str
    status: str
    qr_code: str
    special_requests: list[str]
    check_in: Optional[dict[str, Any]] = None
    check_out: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        check_in = None
        if booking.check_in is not None:
            check_in = {
                "time": booking.check_in.time,
                "verified_by": booking.check_in.verified_by,
                "latitude": booking.check_in.latitude,
                "longitude": booking.check_in.longitude,
            }
        check_out = None
        if booking.check_out is not None:
            check_out = {
                "time": booking.check_out.time,
                "rating": booking.check_out.rating,
                "comment": booking.check_out.comment,
            }
        return cls(
            id=booking.booking_id,
            booking_code=booking.booking_code,
            user_id=booking.user_id,
            user_name=booking.user_name,
            temple_id=booking.temple_id,
            slot_id=booking.slot_id,
            visitors_count=booking.visitors_count,
            visitors=[visitor.to_dict() for visitor in booking.visitors],
            contact_email=booking.contact_email,
            contact_phone=booking.contact_phone,
            total_amount=booking.total_amount,
            payment_status=booking.payment_status.value,
            status=booking.status.value,
            qr_code=booking.qr_code,
            special_requests=list(booking.special_requests),
            check_in=check_in,
            check_out=check_out,
            created_at=booking.created_at,
        )


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    count: int = Field(ge=0)
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    pages: int = Field(ge=0)


class QrCodeResponse(BaseModel):
    booking_code: str
    qr_code: str


def _server_error(action: str) -> HTTPException:
    logger.exception("Unexpected booking failure while %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Server error while {action}",
    )


@router.post(
    "",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    payload: CreateBookingRequest,
    identity: Identity = Depends(get_identity),
    service: BookingService = Depends(get_booking_service),
) -> ApiResponse[BookingResponse]:
    visitors = [
        Visitor(
            name=item.name,
            age=item.age,
            gender=item.gender,
            id_type=item.id_type,
            id_number=item.id_number,
        )
        for item in payload.visitors
    ]
    try:
        booking = await run_in_threadpool(
            service.create_booking,
            identity,
            payload.slot_id,
            payload.visitors_count,
            visitors,
            payload.special_requests,
        )
        return ApiResponse(
            message="Booking created successfully",
            data=BookingResponse.from_booking(booking),
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("creating booking") from exc


@router.get("", response_model=ApiResponse[BookingListResponse], status_code=status.HTTP_200_OK)
async def list_bookings(
    booking_status: Optional[BookingStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    identity: Identity = Depends(get_identity),
    service: BookingService = Depends(get_booking_service),
) -> ApiResponse[BookingListResponse]:
    try:
        result = await run_in_threadpool(service.list_bookings, identity, booking_status, page, limit)
        return ApiResponse(
            data=BookingListResponse(
                bookings=[BookingResponse.from_booking(item) for item in result.bookings],
                count=len(result.bookings),
                total=result.total,
                page=result.page,
                pages=result.pages,
            )
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("fetching bookings") from exc


@router.get(
    "/qr/{booking_code}",
    response_model=ApiResponse[QrCodeResponse],
    status_code=status.HTTP_200_OK,
)
async def get_qr_code(
    booking_code: str,
    identity: Identity = Depends(get_identity),
    service: BookingService = Depends(get_booking_service),
) -> ApiResponse[QrCodeResponse]:
    try:
        booking = await run_in_threadpool(service.get_booking_by_code, booking_code, identity)
        return ApiResponse(
            data=QrCodeResponse(booking_code=booking.booking_code, qr_code=booking.qr_code)
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("fetching QR code") from exc


@router.get(
    "/{booking_id}",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_200_OK,
)
async def get_booking(
    booking_id: int,
    identity: Identity = Depends(get_identity),
    service: BookingService = Depends(get_booking_service),
) -> ApiResponse[BookingResponse]:
    try:
        booking = await run_in_threadpool(service.get_booking, booking_id, identity)
        return ApiResponse(data=BookingResponse.from_booking(booking))
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("fetching booking") from exc


@router.put(
    "/{booking_id}/cancel",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_200_OK,
)
async def cancel_booking(
    booking_id: int,
    identity: Identity = Depends(get_identity),
    service: BookingService = Depends(get_booking_service),
) -> ApiResponse[BookingResponse]:
    try:
        booking = await run_in_threadpool(service.cancel_booking, booking_id, identity)
        return ApiResponse(
            message="Booking cancelled successfully",
            data=BookingResponse.from_booking(booking),
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("cancelling booking") from exc


@router.put(
    "/{booking_id}/checkin",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_200_OK,
)
async def check_in(
    booking_id: int,
    payload: CheckInRequest = CheckInRequest(),
    admin: Identity = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
) -> ApiResponse[BookingResponse]:
    try:
        booking = await run_in_threadpool(
            service.check_in,
            booking_id,
            admin,
            payload.latitude,
            payload.longitude,
        )
        return ApiResponse(
            message="Check-in successful",
            data=BookingResponse.from_booking(booking),
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("checking in") from exc


@router.put(
    "/{booking_id}/checkout",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def check_out(
    booking_id: int,
    payload: CheckOutRequest = CheckOutRequest(),
    service: BookingService = Depends(get_booking_service),
) -> ApiResponse[BookingResponse]:
    try:
        booking = await run_in_threadpool(
            service.check_out,
            booking_id,
            payload.rating,
            payload.comment,
        )
        return ApiResponse(
            message="Check-out successful",
            data=BookingResponse.from_booking(booking),
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("checking out") from exc

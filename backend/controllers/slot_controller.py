"""HTTP controller layer for slot browsing and administration."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator
from starlette.concurrency import run_in_threadpool

from backend.controllers.dependencies import get_slot_service, require_admin
from backend.controllers.envelope import ApiResponse, to_http_exception
from backend.domain.constraints import TIME_PATTERN
from backend.domain.errors import TempleServiceError
from backend.domain.models import Slot, SlotStatus, SpecialEvent
from backend.services.slot_service import SlotService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/slots", tags=["slots"])


class SpecialEventRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    additional_price: float = Field(default=0.0, ge=0.0)

    def to_domain(self) -> SpecialEvent:
        return SpecialEvent(
            name=self.name.strip(),
            description=self.description.strip(),
            additional_price=self.additional_price,
        )


class TimeWindowRequest(BaseModel):
    start_time: str = Field(pattern=TIME_PATTERN.pattern)
    end_time: str = Field(pattern=TIME_PATTERN.pattern)

    @model_validator(mode="after")
    def validate_order(self) -> "TimeWindowRequest":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be earlier than end_time")
        return self


class CreateSlotRequest(TimeWindowRequest):
    temple_id: int = Field(gt=0)
    date: date
    capacity: Optional[int] = Field(default=None, ge=1)
    price: float = Field(default=0.0, ge=0.0)
    special_event: Optional[SpecialEventRequest] = None


class BulkCreateSlotsRequest(BaseModel):
    temple_id: int = Field(gt=0)
    start_date: date
    end_date: date
    time_slots: Optional[list[TimeWindowRequest]] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    price: float = Field(default=0.0, ge=0.0)

    @field_validator("end_date")
    @classmethod
    def validate_range(cls, value: date, info: ValidationInfo) -> date:
        start_date = info.data.get("start_date")
        if start_date is not None and value < start_date:
            raise ValueError("end_date must not be before start_date")
        return value


class UpdateSlotRequest(BaseModel):
    capacity: Optional[int] = Field(default=None, ge=1)
    price: Optional[float] = Field(default=None, ge=0.0)
    status: Optional[SlotStatus] = None
    special_event: Optional[SpecialEventRequest] = None
    clear_special_event: bool = False


class SlotResponse(BaseModel):
    id: int
    temple_id: int
    date: date
    start_time: str
    end_time: str
    capacity: int
    booked_count: int
    available_spots: int
    occupancy_percentage: int
    price: float
    status: str
    is_active: bool
    special_event: Optional[dict[str, Any]] = None
    is_bookable: Optional[bool] = None

    @classmethod
    def from_slot(cls, slot: Slot, is_bookable: Optional[bool] = None) -> "SlotResponse":
        return cls(
            id=slot.slot_id,
            temple_id=slot.temple_id,
            date=slot.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            capacity=slot.capacity,
            booked_count=slot.booked_count,
            available_spots=slot.available_spots,
            occupancy_percentage=slot.occupancy_percentage,
            price=slot.price,
            status=slot.status.value,
            is_active=slot.is_active,
            special_event=slot.special_event.to_dict() if slot.special_event else None,
            is_bookable=is_bookable,
        )


class SlotListResponse(BaseModel):
    slots: dict[str, list[SlotResponse]]
    total: int = Field(ge=0)


class AvailabilityResponse(BaseModel):
    slot_id: int
    requested_visitors: int
    is_available: bool
    available_spots: int
    status: str
    reason: Optional[str] = None


class BulkCreateResponse(BaseModel):
    count: int = Field(ge=0)
    skipped: int = Field(ge=0)


def _server_error(action: str) -> HTTPException:
    logger.exception("Unexpected slot failure while %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Server error while {action}",
    )


@router.get("", response_model=ApiResponse[SlotListResponse], status_code=status.HTTP_200_OK)
async def list_slots(
    temple_id: int = Query(gt=0),
    slot_date: Optional[date] = Query(default=None, alias="date"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    service: SlotService = Depends(get_slot_service),
) -> ApiResponse[SlotListResponse]:
    try:
        grouped = await run_in_threadpool(
            service.list_slots,
            temple_id,
            slot_date,
            start_date,
            end_date,
        )
        slots = {
            day: [SlotResponse.from_slot(view.slot, view.is_bookable) for view in views]
            for day, views in grouped.items()
        }
        return ApiResponse(
            data=SlotListResponse(
                slots=slots,
                total=sum(len(items) for items in slots.values()),
            )
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("fetching slots") from exc


@router.get("/{slot_id}", response_model=ApiResponse[SlotResponse], status_code=status.HTTP_200_OK)
async def get_slot(
    slot_id: int,
    service: SlotService = Depends(get_slot_service),
) -> ApiResponse[SlotResponse]:
    try:
        slot = await run_in_threadpool(service.get_slot, slot_id)
        return ApiResponse(data=SlotResponse.from_slot(slot))
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("fetching slot") from exc


@router.get(
    "/{slot_id}/availability",
    response_model=ApiResponse[AvailabilityResponse],
    status_code=status.HTTP_200_OK,
)
async def check_availability(
    slot_id: int,
    visitors: int = Query(default=1, ge=1),
    service: SlotService = Depends(get_slot_service),
) -> ApiResponse[AvailabilityResponse]:
    try:
        result = await run_in_threadpool(service.check_availability, slot_id, visitors)
        return ApiResponse(
            data=AvailabilityResponse(
                slot_id=result.slot.slot_id,
                requested_visitors=result.requested_visitors,
                is_available=result.is_available,
                available_spots=result.slot.available_spots,
                status=result.slot.status.value,
                reason=result.reason,
            )
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("checking availability") from exc


@router.post(
    "",
    response_model=ApiResponse[SlotResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_slot(
    payload: CreateSlotRequest,
    service: SlotService = Depends(get_slot_service),
) -> ApiResponse[SlotResponse]:
    try:
        slot = await run_in_threadpool(
            service.create_slot,
            payload.temple_id,
            payload.date,
            payload.start_time,
            payload.end_time,
            payload.capacity,
            payload.price,
            payload.special_event.to_domain() if payload.special_event else None,
        )
        return ApiResponse(message="Slot created successfully", data=SlotResponse.from_slot(slot))
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("creating slot") from exc


@router.post(
    "/bulk",
    response_model=ApiResponse[BulkCreateResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def bulk_create_slots(
    payload: BulkCreateSlotsRequest,
    service: SlotService = Depends(get_slot_service),
) -> ApiResponse[BulkCreateResponse]:
    windows = (
        [(item.start_time, item.end_time) for item in payload.time_slots]
        if payload.time_slots
        else None
    )
    try:
        result = await run_in_threadpool(
            service.bulk_create,
            payload.temple_id,
            payload.start_date,
            payload.end_date,
            windows,
            payload.capacity,
            payload.price,
        )
        return ApiResponse(
            message=f"{result.created} slots created successfully",
            data=BulkCreateResponse(count=result.created, skipped=result.skipped),
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("creating slots") from exc


@router.put(
    "/{slot_id}",
    response_model=ApiResponse[SlotResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def update_slot(
    slot_id: int,
    payload: UpdateSlotRequest,
    service: SlotService = Depends(get_slot_service),
) -> ApiResponse[SlotResponse]:
    try:
        slot = await run_in_threadpool(
            service.update_slot,
            slot_id,
            payload.capacity,
            payload.price,
            payload.status,
            payload.special_event.to_domain() if payload.special_event else None,
            payload.clear_special_event,
        )
        return ApiResponse(message="Slot updated successfully", data=SlotResponse.from_slot(slot))
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("updating slot") from exc


@router.delete(
    "/{slot_id}",
    response_model=ApiResponse[dict[str, Any]],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def delete_slot(
    slot_id: int,
    service: SlotService = Depends(get_slot_service),
) -> ApiResponse[dict[str, Any]]:
    try:
        await run_in_threadpool(service.delete_slot, slot_id)
        return ApiResponse(message="Slot deleted successfully")
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _server_error("deleting slot") from exc

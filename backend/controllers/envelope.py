"""Response envelope and HTTP error mapping shared by all controllers."""

from __future__ import annotations

from typing import Generic, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.domain.errors import (
    CapacityExceededError,
    NotCancellableError,
    NotFoundError,
    SlotUnavailableError,
    TempleServiceError,
    ValidationError,
)


DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    success: bool = True
    message: str = ""
    data: Optional[DataT] = None


_STATUS_BY_ERROR: tuple[tuple[type[TempleServiceError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (SlotUnavailableError, status.HTTP_400_BAD_REQUEST),
    (NotCancellableError, status.HTTP_400_BAD_REQUEST),
    (CapacityExceededError, status.HTTP_400_BAD_REQUEST),
)


def to_http_exception(exc: TempleServiceError) -> HTTPException:
    """Map a domain failure to its HTTP status; store and encoder faults become 500."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc) or "Server error",
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail), "data": None},
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation failed", "data": None, "errors": errors},
    )


def install_error_envelope(app: FastAPI) -> None:
    """Render every HTTP and request-validation error as `{success: false, message}`."""
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)

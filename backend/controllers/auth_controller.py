"""Controller layer for admin and pilgrim session login."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from backend.controllers.dependencies import bearer_scheme, get_auth_service
from backend.controllers.envelope import ApiResponse
from backend.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthenticationError,
    AuthService,
    InvalidAdminTokenError,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)


class PilgrimLoginRequest(BaseModel):
    user_id: str = Field(min_length=3, max_length=64)
    name: str = Field(min_length=2, max_length=100)
    email: str = ""
    phone: str = ""


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str


@router.post("/login", response_model=ApiResponse[LoginResponse], status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[LoginResponse]:
    try:
        bearer = auth_service.login(payload.admin_token)
        return ApiResponse(
            message="Login successful",
            data=LoginResponse(access_token=bearer, role="admin"),
        )
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc


@router.post(
    "/login/pilgrim",
    response_model=ApiResponse[LoginResponse],
    status_code=status.HTTP_200_OK,
)
async def login_pilgrim(
    payload: PilgrimLoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[LoginResponse]:
    try:
        bearer = auth_service.login_pilgrim(
            user_id=payload.user_id,
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
        )
        return ApiResponse(
            message="Login successful",
            data=LoginResponse(access_token=bearer, role="pilgrim"),
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected pilgrim login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc


@router.post("/logout", response_model=ApiResponse[dict[str, Any]], status_code=status.HTTP_200_OK)
async def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[dict[str, Any]]:
    if credentials is not None:
        auth_service.logout(credentials.credentials)
    return ApiResponse(message="Logged out")

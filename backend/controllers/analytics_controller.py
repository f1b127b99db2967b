"""Controller layer for the admin analytics overview."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from backend.controllers.dependencies import get_analytics_service, require_admin
from backend.controllers.envelope import ApiResponse, to_http_exception
from backend.domain.errors import TempleServiceError
from backend.services.analytics_service import AnalyticsService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


class OverviewResponse(BaseModel):
    period: str
    since: datetime
    booking_trends: list[dict[str, Any]]
    temple_performance: list[dict[str, Any]]
    peak_hours: list[dict[str, Any]]
    cancellation_analysis: list[dict[str, Any]]
    summary: dict[str, Any]


@router.get(
    "/overview",
    response_model=ApiResponse[OverviewResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def get_overview(
    period: Optional[str] = Query(default=None),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[OverviewResponse]:
    try:
        overview = await run_in_threadpool(service.overview, period)
        return ApiResponse(
            data=OverviewResponse(
                period=overview.period,
                since=overview.since,
                booking_trends=overview.booking_trends,
                temple_performance=overview.temple_performance,
                peak_hours=overview.peak_hours,
                cancellation_analysis=overview.cancellation_analysis,
                summary=overview.summary,
            )
        )
    except TempleServiceError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected analytics failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error while fetching analytics",
        ) from exc

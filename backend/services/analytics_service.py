"""Booking analytics aggregated with pandas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import pandas as pd

from backend.domain.errors import ValidationError
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

PERIOD_OFFSETS = {
    "week": pd.DateOffset(days=7),
    "month": pd.DateOffset(days=30),
    "quarter": pd.DateOffset(months=3),
    "year": pd.DateOffset(months=12),
}


@dataclass(frozen=True)
class AnalyticsOverview:
    period: str
    since: datetime
    booking_trends: list[dict[str, Any]]
    temple_performance: list[dict[str, Any]]
    peak_hours: list[dict[str, Any]]
    cancellation_analysis: list[dict[str, Any]]
    summary: dict[str, Any]


class AnalyticsService:
    """Summarises bookings for the admin overview."""

    def __init__(
        self,
        repository: DataRepository,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self._clock = clock or datetime.now

    def _period_start(self, period: str) -> datetime:
        offset = PERIOD_OFFSETS.get(period)
        if offset is None:
            raise ValidationError(
                f"period must be one of {', '.join(PERIOD_OFFSETS)}"
            )
        return (pd.Timestamp(self._clock()) - offset).to_pydatetime()

    def _build_frame(self, since: datetime) -> pd.DataFrame:
        records = self._repository.list_bookings_for_analytics(since)
        frame = pd.DataFrame(
            [
                {
                    "booking_id": record.booking_id,
                    "temple_id": record.temple_id,
                    "temple_name": record.temple_name,
                    "city": record.city,
                    "created_at": record.created_at,
                    "start_time": record.start_time,
                    "visitors": record.visitors_count,
                    "revenue": record.total_amount,
                    "status": record.status,
                    "rating": record.rating,
                }
                for record in records
            ],
            columns=[
                "booking_id",
                "temple_id",
                "temple_name",
                "city",
                "created_at",
                "start_time",
                "visitors",
                "revenue",
                "status",
                "rating",
            ],
        )
        if frame.empty:
            return frame
        frame["created_at"] = pd.to_datetime(frame["created_at"], errors="coerce")
        frame = frame.dropna(subset=["created_at"]).copy()
        frame["day"] = frame["created_at"].dt.strftime("%Y-%m-%d")
        frame["hour"] = frame["start_time"].str.slice(0, 2).astype(int)
        frame["rating"] = pd.to_numeric(frame["rating"], errors="coerce")
        return frame

    def overview(self, period: Optional[str] = None) -> AnalyticsOverview:
        resolved_period = period or self._settings.analytics_default_period
        since = self._period_start(resolved_period)
        frame = self._build_frame(since)

        if frame.empty:
            logger.info("Analytics overview has no bookings | period=%s", resolved_period)
            return AnalyticsOverview(
                period=resolved_period,
                since=since,
                booking_trends=[],
                temple_performance=[],
                peak_hours=[],
                cancellation_analysis=[],
                summary={
                    "total_bookings": 0,
                    "total_visitors": 0,
                    "total_revenue": 0.0,
                    "avg_bookings_per_day": 0,
                },
            )

        kept = frame[frame["status"] != "cancelled"]

        trends = (
            kept.groupby("day", sort=True)
            .agg(
                bookings=("booking_id", "count"),
                visitors=("visitors", "sum"),
                revenue=("revenue", "sum"),
            )
            .reset_index()
        )

        performance = (
            kept.groupby(["temple_id", "temple_name", "city"], sort=False)
            .agg(
                bookings=("booking_id", "count"),
                visitors=("visitors", "sum"),
                revenue=("revenue", "sum"),
                avg_rating=("rating", "mean"),
            )
            .reset_index()
            .sort_values(by=["bookings", "temple_id"], ascending=[False, True])
        )
        performance["avg_rating"] = performance["avg_rating"].round(1)

        peak_hours = (
            kept.groupby("hour", sort=True)
            .agg(bookings=("booking_id", "count"), visitors=("visitors", "sum"))
            .reset_index()
        )

        cancellations = (
            frame.groupby("status", sort=True)
            .agg(bookings=("booking_id", "count"))
            .reset_index()
        )

        total_bookings = int(trends["bookings"].sum()) if not trends.empty else 0
        summary = {
            "total_bookings": total_bookings,
            "total_visitors": int(trends["visitors"].sum()) if not trends.empty else 0,
            "total_revenue": round(float(trends["revenue"].sum()), 2) if not trends.empty else 0.0,
            "avg_bookings_per_day": (
                int(round(total_bookings / len(trends))) if len(trends) else 0
            ),
        }

        return AnalyticsOverview(
            period=resolved_period,
            since=since,
            booking_trends=[
                {
                    "date": str(row.day),
                    "bookings": int(row.bookings),
                    "visitors": int(row.visitors),
                    "revenue": round(float(row.revenue), 2),
                }
                for row in trends.itertuples(index=False)
            ],
            temple_performance=[
                {
                    "temple_id": int(row.temple_id),
                    "temple_name": str(row.temple_name),
                    "location": str(row.city),
                    "bookings": int(row.bookings),
                    "visitors": int(row.visitors),
                    "revenue": round(float(row.revenue), 2),
                    "avg_rating": None if pd.isna(row.avg_rating) else float(row.avg_rating),
                }
                for row in performance.itertuples(index=False)
            ],
            peak_hours=[
                {
                    "hour": int(row.hour),
                    "bookings": int(row.bookings),
                    "visitors": int(row.visitors),
                }
                for row in peak_hours.itertuples(index=False)
            ],
            cancellation_analysis=[
                {"status": str(row.status), "count": int(row.bookings)}
                for row in cancellations.itertuples(index=False)
            ],
            summary=summary,
        )

"""Dashboard statistics computed from persisted bookings and the catalog."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import numpy as np
import pandas as pd

from backend.domain.models import BookingStatus, Occurrence, ResourceStatus
from backend.repository.data_repository import DataRepository
from backend.services.catalog_service import UNBOOKABLE_STATUSES
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

_OCCURRENCE_COLUMNS = ["occurrence_id", "resource_id", "status", "start", "end", "created_at"]


def _as_utc(value: datetime) -> pd.Timestamp:
    stamp = pd.Timestamp(value)
    if stamp.tzinfo is None:
        return stamp.tz_localize("UTC")
    return stamp.tz_convert("UTC")


def build_occurrence_frame(occurrences: list[Occurrence]) -> pd.DataFrame:
    """Flatten occurrences into a frame with UTC timestamps."""
    if not occurrences:
        return pd.DataFrame(columns=_OCCURRENCE_COLUMNS)
    frame = pd.DataFrame(
        [
            {
                "occurrence_id": item.occurrence_id,
                "resource_id": item.resource_id,
                "status": item.status.value,
                "start": _as_utc(item.interval.start),
                "end": _as_utc(item.interval.end),
                "created_at": _as_utc(item.created_at),
            }
            for item in occurrences
        ]
    )
    return frame


def compute_utilization_rate(
    frame: pd.DataFrame,
    bookable_resource_count: int,
    window_start: datetime,
    window_end: datetime,
    bookable_hours_per_day: float,
) -> float:
    """Approved hours inside the window over bookable capacity, clipped to [0, 1]."""
    if frame.empty or bookable_resource_count <= 0:
        return 0.0
    approved = frame[frame["status"] == BookingStatus.APPROVED.value]
    if approved.empty:
        return 0.0

    lower = _as_utc(window_start)
    upper = _as_utc(window_end)
    clipped_start = approved["start"].where(approved["start"] > lower, lower)
    clipped_end = approved["end"].where(approved["end"] < upper, upper)
    booked_hours = ((clipped_end - clipped_start).dt.total_seconds() / 3600.0).clip(lower=0.0).sum()

    window_days = (upper - lower).total_seconds() / 86400.0
    capacity_hours = bookable_resource_count * window_days * bookable_hours_per_day
    if capacity_hours <= 0.0:
        return 0.0
    return float(np.clip(booked_hours / capacity_hours, 0.0, 1.0))


class DashboardService:
    """Aggregates catalog and booking state for the dashboard and admin views."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def get_stats(self, now: Optional[datetime] = None) -> dict[str, Any]:
        reference = now or datetime.now(timezone.utc)
        window_start = reference - timedelta(days=self._settings.utilization_window_days)

        resources = self._repository.list_resources()
        frame = build_occurrence_frame(self._repository.list_occurrences())

        status_counts = (
            frame["status"].value_counts().to_dict() if not frame.empty else {}
        )
        bookable = [item for item in resources if item.status not in UNBOOKABLE_STATUSES]
        type_counts = (
            pd.Series([item.resource_type.value for item in resources], dtype="object")
            .value_counts()
            .sort_index()
            .to_dict()
        )

        utilization_rate = compute_utilization_rate(
            frame=frame,
            bookable_resource_count=len(bookable),
            window_start=window_start,
            window_end=reference,
            bookable_hours_per_day=self._settings.bookable_hours_per_day,
        )
        stats = {
            "total_resources": len(resources),
            "available_resources": sum(
                1 for item in resources if item.status is ResourceStatus.AVAILABLE
            ),
            "active_bookings": int(status_counts.get(BookingStatus.APPROVED.value, 0)),
            "pending_approvals": int(status_counts.get(BookingStatus.PENDING.value, 0)),
            "total_bookings": int(len(frame)),
            "utilization_rate": round(utilization_rate, 4),
            "resources_by_type": {str(key): int(value) for key, value in type_counts.items()},
        }
        logger.info(
            "Dashboard stats computed | resources=%s | bookings=%s | utilization=%.4f",
            stats["total_resources"],
            stats["total_bookings"],
            utilization_rate,
        )
        return stats

    def recent_bookings(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        resolved_limit = limit or self._settings.recent_bookings_limit
        resources = {item.resource_id: item.name for item in self._repository.list_resources()}
        users = {item.uid: item.display_name for item in self._repository.list_users()}
        return [
            {
                "occurrence_id": item.occurrence_id,
                "resource_id": item.resource_id,
                "resource_name": resources.get(item.resource_id, "Unknown Resource"),
                "requester_id": item.requester_id,
                "requester_name": users.get(item.requester_id, item.requester_id),
                "start_time": item.interval.start,
                "end_time": item.interval.end,
                "status": item.status.value,
            }
            for item in self._repository.list_recent_occurrences(resolved_limit)
        ]

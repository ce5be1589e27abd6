from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from backend.domain.models import Actor, BookingRequest, Role, TimeInterval
from backend.repository.data_repository import DataRepository
from backend.services.approval_service import ApprovalService
from backend.services.conflict_index import ConflictIndex
from backend.services.dashboard_service import (
    DashboardService,
    build_occurrence_frame,
    compute_utilization_rate,
)
from backend.services.scheduling_service import BookingScheduler
from backend.utils.config import get_settings


ADMIN = Actor(uid="admin-001", role=Role.ADMIN)
LECTURER = Actor(uid="lect-001", role=Role.LECTURER)

NOW = datetime(2024, 1, 8, tzinfo=timezone.utc)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        seed_demo_data=True,
        utilization_window_days=7,
        bookable_hours_per_day=10.0,
        recent_bookings_limit=5,
    )


def _book(scheduler: BookingScheduler, start: datetime, hours: int):
    request = BookingRequest(
        requester_id=LECTURER.uid,
        resource_id="res-lab-a",
        interval=TimeInterval(start=start, end=start + timedelta(hours=hours)),
        purpose="Lab session",
    )
    return scheduler.submit(request, actor=LECTURER).occurrence


def _build_seeded_dashboard(tmp_path):
    settings = _build_test_settings(tmp_path, "dashboard.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()
    index = ConflictIndex()
    scheduler = BookingScheduler(index=index, repository=repository, settings=settings)
    approvals = ApprovalService(index=index, repository=repository, settings=settings)

    inside = _book(scheduler, datetime(2024, 1, 2, 8, tzinfo=timezone.utc), 10)
    straddling = _book(scheduler, datetime(2023, 12, 31, 22, tzinfo=timezone.utc), 4)
    _book(scheduler, datetime(2024, 1, 3, 8, tzinfo=timezone.utc), 2)
    approvals.approve(ADMIN, inside.occurrence_id)
    approvals.approve(ADMIN, straddling.occurrence_id)
    return DashboardService(repository=repository, settings=settings)


def test_stats_count_catalog_and_bookings(tmp_path):
    dashboard = _build_seeded_dashboard(tmp_path)

    stats = dashboard.get_stats(now=NOW)

    assert stats["total_resources"] == 5
    assert stats["available_resources"] == 4
    assert stats["active_bookings"] == 2
    assert stats["pending_approvals"] == 1
    assert stats["total_bookings"] == 3
    assert stats["resources_by_type"] == {"equipment": 1, "lab": 1, "room": 2, "vehicle": 1}


def test_utilization_counts_only_approved_hours_inside_the_window(tmp_path):
    dashboard = _build_seeded_dashboard(tmp_path)

    stats = dashboard.get_stats(now=NOW)

    # 10h inside plus 2h of the straddling booking, over 4 bookable resources * 7 days * 10h
    assert stats["utilization_rate"] == pytest.approx(round(12 / 280, 4))


def test_recent_bookings_resolve_names(tmp_path):
    dashboard = _build_seeded_dashboard(tmp_path)

    recent = dashboard.recent_bookings(limit=2)

    assert len(recent) == 2
    assert {item["resource_name"] for item in recent} == {"Computer Lab A"}
    assert {item["requester_name"] for item in recent} == {"Dr. Smith"}


def test_empty_frame_has_zero_utilization():
    frame = build_occurrence_frame([])
    assert frame.empty
    assert compute_utilization_rate(frame, 3, NOW - timedelta(days=7), NOW, 10.0) == 0.0


def test_utilization_is_clipped_to_one():
    frame = pd.DataFrame(
        {
            "status": ["approved", "approved"],
            "start": [pd.Timestamp("2024-01-01", tz="UTC"), pd.Timestamp("2024-01-01", tz="UTC")],
            "end": [pd.Timestamp("2024-01-08", tz="UTC"), pd.Timestamp("2024-01-08", tz="UTC")],
        }
    )
    rate = compute_utilization_rate(frame, 1, NOW - timedelta(days=7), NOW, 10.0)
    assert rate == 1.0

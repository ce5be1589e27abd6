from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from backend.domain.models import Actor, BookingRequest, BookingStatus, Role, TimeInterval
from backend.repository.data_repository import DataRepository, PersistenceError
from backend.services.approval_service import ApprovalService
from backend.services.conflict_index import ConflictIndex
from backend.services.notification_service import NotificationService
from backend.services.scheduling_service import BookingScheduler
from backend.utils.config import get_settings


ADMIN = Actor(uid="admin-001", role=Role.ADMIN)
LECTURER = Actor(uid="lect-001", role=Role.LECTURER)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, seed_demo_data=True)


def _request() -> BookingRequest:
    start = datetime(2024, 4, 8, 14, tzinfo=timezone.utc)
    return BookingRequest(
        requester_id=LECTURER.uid,
        resource_id="res-room-c",
        interval=TimeInterval(start=start, end=start + timedelta(hours=2)),
        purpose="Guest lecture",
    )


def test_failed_write_keeps_commit_and_is_retried(monkeypatch, tmp_path):
    settings = _build_test_settings(tmp_path, "retry.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()
    index = ConflictIndex()
    scheduler = BookingScheduler(index=index, repository=repository, settings=settings)
    approvals = ApprovalService(
        index=index,
        repository=repository,
        notifier=NotificationService(repository),
        settings=settings,
    )

    original_persist_batch = DataRepository.persist_batch

    def failing_persist_batch(self, occurrences):
        raise PersistenceError("disk full")

    monkeypatch.setattr(DataRepository, "persist_batch", failing_persist_batch)
    group = scheduler.submit(_request(), actor=LECTURER)
    occurrence_id = group.occurrence.occurrence_id

    assert index.contains(occurrence_id)
    assert repository.get_occurrence(occurrence_id) is None
    assert repository.pending_retry_count() == 1

    monkeypatch.setattr(DataRepository, "persist_batch", original_persist_batch)
    approvals.approve(ADMIN, occurrence_id)

    assert repository.pending_retry_count() == 0
    stored = repository.get_occurrence(occurrence_id)
    assert stored is not None
    assert stored.status is BookingStatus.APPROVED


def test_newer_queued_version_replaces_older_one(tmp_path):
    settings = _build_test_settings(tmp_path, "queue.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    index = ConflictIndex()
    scheduler = BookingScheduler(index=index, repository=repository, settings=settings)
    occurrence = scheduler.submit(_request(), actor=LECTURER).occurrence

    repository.enqueue_retry([occurrence])
    repository.enqueue_retry([occurrence.with_status(BookingStatus.APPROVED)])

    assert repository.pending_retry_count() == 1
    assert repository.flush_retry_queue() == 1
    assert repository.get_occurrence(occurrence.occurrence_id).status is BookingStatus.APPROVED


def test_startup_reload_rebuilds_the_index(tmp_path):
    settings = _build_test_settings(tmp_path, "reload.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()
    first_index = ConflictIndex()
    scheduler = BookingScheduler(index=first_index, repository=repository, settings=settings)
    approvals = ApprovalService(index=first_index, repository=repository, settings=settings)
    kept = scheduler.submit(_request(), actor=LECTURER).occurrence
    approvals.approve(ADMIN, kept.occurrence_id)

    rebuilt = ConflictIndex()
    rebuilt.load("res-room-c", repository.list_active_occurrences("res-room-c"))

    restored = rebuilt.get(kept.occurrence_id)
    assert restored is not None
    assert restored.status is BookingStatus.APPROVED
    assert restored.interval == kept.interval


def test_stale_queued_write_never_overwrites_a_newer_status(monkeypatch, tmp_path):
    settings = _build_test_settings(tmp_path, "stale.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()
    index = ConflictIndex()
    scheduler = BookingScheduler(index=index, repository=repository, settings=settings)
    approvals = ApprovalService(index=index, repository=repository, settings=settings)
    occurrence_id = scheduler.submit(_request(), actor=LECTURER).occurrence.occurrence_id

    original_persist_batch = DataRepository.persist_batch

    def failing_persist_batch(self, occurrences):
        raise PersistenceError("disk full")

    monkeypatch.setattr(DataRepository, "persist_batch", failing_persist_batch)
    approvals.approve(ADMIN, occurrence_id)
    assert repository.pending_retry_count() == 1

    calls = {"count": 0}

    def fail_first_call(self, occurrences):
        calls["count"] += 1
        if calls["count"] == 1:
            raise PersistenceError("disk full")
        return original_persist_batch(self, occurrences)

    # the queued flush fails, the cancellation itself is written
    monkeypatch.setattr(DataRepository, "persist_batch", fail_first_call)
    approvals.cancel(LECTURER, occurrence_id)

    assert repository.get_occurrence(occurrence_id).status is BookingStatus.CANCELLED
    assert repository.pending_retry_count() == 0

    monkeypatch.setattr(DataRepository, "persist_batch", original_persist_batch)
    later = replace(
        _request(),
        interval=TimeInterval(
            start=datetime(2024, 4, 9, 14, tzinfo=timezone.utc),
            end=datetime(2024, 4, 9, 16, tzinfo=timezone.utc),
        ),
    )
    scheduler.submit(later, actor=LECTURER)

    assert repository.get_occurrence(occurrence_id).status is BookingStatus.CANCELLED
    rebuilt = ConflictIndex()
    rebuilt.load("res-room-c", repository.list_active_occurrences("res-room-c"))
    assert not rebuilt.contains(occurrence_id)


def test_upsert_ignores_older_versions(tmp_path):
    settings = _build_test_settings(tmp_path, "upsert.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    index = ConflictIndex()
    scheduler = BookingScheduler(index=index, repository=repository, settings=settings)
    pending = scheduler.submit(_request(), actor=LECTURER).occurrence

    approved = replace(
        pending,
        status=BookingStatus.APPROVED,
        updated_at=pending.updated_at + timedelta(seconds=1),
    )
    cancelled = replace(
        pending,
        status=BookingStatus.CANCELLED,
        updated_at=pending.updated_at + timedelta(seconds=2),
    )
    repository.persist_batch([cancelled])
    repository.persist_batch([approved])

    assert repository.get_occurrence(pending.occurrence_id).status is BookingStatus.CANCELLED

    repository.enqueue_retry([cancelled])
    repository.enqueue_retry([approved])
    assert repository.flush_retry_queue() == 1
    assert repository.get_occurrence(pending.occurrence_id).status is BookingStatus.CANCELLED

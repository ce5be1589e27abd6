from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from backend.domain.errors import (
    InvalidRequest,
    PermissionDenied,
    RecurrenceTooLong,
    ResourceUnavailable,
    SchedulingError,
)
from backend.domain.models import (
    Actor,
    BookingRequest,
    BookingStatus,
    RecurrenceFrequency,
    RecurrenceRule,
    RecurringGroup,
    Role,
    SingleOccurrence,
    TimeInterval,
)
from backend.repository.data_repository import DataRepository
from backend.services.approval_service import ApprovalService
from backend.services.catalog_service import (
    CatalogService,
    ResourceInUseError,
    ResourceNotBookableError,
    ResourceNotFoundError,
)
from backend.services.conflict_index import ConflictIndex
from backend.services.notification_service import NotificationService
from backend.services.scheduling_service import BookingScheduler
from backend.utils.config import get_settings


ADMIN = Actor(uid="admin-001", role=Role.ADMIN)
LECTURER = Actor(uid="lect-001", role=Role.LECTURER)
STUDENT = Actor(uid="stud-001", role=Role.STUDENT)


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, seed_demo_data=True, **overrides)


def _build_services(tmp_path, filename: str = "scheduling.db", **overrides):
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()
    index = ConflictIndex()
    catalog = CatalogService(repository=repository, settings=settings)
    scheduler = BookingScheduler(
        index=index,
        repository=repository,
        settings=settings,
        resource_check=catalog.ensure_bookable,
    )
    approvals = ApprovalService(
        index=index,
        repository=repository,
        notifier=NotificationService(repository),
        settings=settings,
    )
    return repository, index, scheduler, approvals


def _slot(day: int, hour: int, hours: int = 1) -> TimeInterval:
    start = datetime(2024, 1, day, hour, tzinfo=timezone.utc)
    return TimeInterval(start=start, end=start + timedelta(hours=hours))


def _request(interval: TimeInterval, requester: str = "lect-001", resource: str = "res-lab-a", recurrence=None):
    return BookingRequest(
        requester_id=requester,
        resource_id=resource,
        interval=interval,
        purpose="Algorithms tutorial",
        recurrence=recurrence,
    )


def test_single_submission_creates_pending_occurrence(tmp_path):
    repository, index, scheduler, _ = _build_services(tmp_path)

    group = scheduler.submit(_request(_slot(1, 10)), actor=LECTURER)

    assert isinstance(group, SingleOccurrence)
    assert group.occurrence.status is BookingStatus.PENDING
    assert index.contains(group.occurrence.occurrence_id)
    stored = repository.get_occurrence(group.occurrence.occurrence_id)
    assert stored is not None
    assert stored.interval == group.occurrence.interval
    assert stored.booking_group_id == group.group_id


def test_recurring_submission_shares_group_and_is_fully_indexed(tmp_path):
    repository, index, scheduler, _ = _build_services(tmp_path)
    rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, until=date(2024, 1, 22))

    group = scheduler.submit(_request(_slot(1, 10), recurrence=rule), actor=LECTURER)

    assert isinstance(group, RecurringGroup)
    assert len(group.occurrences) == 4
    assert {item.booking_group_id for item in group.occurrences} == {group.group_id}
    assert all(index.contains(item.occurrence_id) for item in group.occurrences)
    assert len(repository.list_occurrences(booking_group_id=group.group_id)) == 4


def test_approving_one_occurrence_leaves_its_siblings_pending(tmp_path):
    repository, index, scheduler, approvals = _build_services(tmp_path)
    rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, until=date(2024, 1, 22))
    group = scheduler.submit(_request(_slot(1, 10), recurrence=rule), actor=LECTURER)
    approved_id = group.occurrences[1].occurrence_id

    approvals.approve(ADMIN, approved_id)

    for position, item in enumerate(group.occurrences):
        expected = BookingStatus.APPROVED if position == 1 else BookingStatus.PENDING
        indexed = index.get(item.occurrence_id)
        stored = repository.get_occurrence(item.occurrence_id)
        assert indexed.status is expected
        assert stored.status is expected
        assert indexed.booking_group_id == group.group_id
        assert stored.booking_group_id == group.group_id
    assert index.get(approved_id).interval.start.day == 8


def test_pending_holds_do_not_block_new_submissions(tmp_path):
    _, index, scheduler, _ = _build_services(tmp_path)

    scheduler.submit(_request(_slot(1, 10)), actor=LECTURER)
    scheduler.submit(_request(_slot(1, 10), requester="stud-001"), actor=STUDENT)

    assert len(index.query("res-lab-a", _slot(1, 10))) == 2


def test_approved_occurrence_blocks_overlapping_submission(tmp_path):
    _, _, scheduler, approvals = _build_services(tmp_path)
    first = scheduler.submit(_request(_slot(1, 10, hours=2)), actor=LECTURER)
    approvals.approve(ADMIN, first.occurrence.occurrence_id)

    with pytest.raises(ResourceUnavailable) as excinfo:
        scheduler.submit(_request(_slot(1, 11), requester="stud-001"), actor=STUDENT)

    assert excinfo.value.conflicting.occurrence_id == first.occurrence.occurrence_id


def test_touching_submission_is_accepted_next_to_approved(tmp_path):
    _, _, scheduler, approvals = _build_services(tmp_path)
    first = scheduler.submit(_request(_slot(1, 10)), actor=LECTURER)
    approvals.approve(ADMIN, first.occurrence.occurrence_id)

    second = scheduler.submit(_request(_slot(1, 11), requester="stud-001"), actor=STUDENT)

    assert second.occurrence.status is BookingStatus.PENDING


def test_recurring_conflict_rejects_whole_group(tmp_path):
    repository, index, scheduler, approvals = _build_services(tmp_path)
    blocker = scheduler.submit(_request(_slot(15, 10)), actor=LECTURER)
    approvals.approve(ADMIN, blocker.occurrence.occurrence_id)
    rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, until=date(2024, 1, 29))

    with pytest.raises(ResourceUnavailable):
        scheduler.submit(_request(_slot(1, 10), requester="stud-001", recurrence=rule), actor=STUDENT)

    assert index.active_count() == 1
    assert repository.list_occurrences(requester_id="stud-001") == []


def test_recurrence_over_ceiling_inserts_nothing(tmp_path):
    _, index, scheduler, _ = _build_services(tmp_path, recurrence_max_occurrences=5)
    rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY, until=date(2024, 1, 31))

    with pytest.raises(RecurrenceTooLong):
        scheduler.submit(_request(_slot(1, 10), recurrence=rule), actor=LECTURER)

    assert index.active_count() == 0


def test_self_overlapping_recurrence_is_invalid(tmp_path):
    _, index, scheduler, _ = _build_services(tmp_path)
    rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY, until=date(2024, 1, 5))

    with pytest.raises(InvalidRequest):
        scheduler.submit(_request(_slot(1, 10, hours=30), recurrence=rule), actor=LECTURER)

    assert index.active_count() == 0


def test_invalid_interval_and_blank_purpose_are_rejected(tmp_path):
    _, index, scheduler, _ = _build_services(tmp_path)
    reversed_slot = TimeInterval(start=_slot(1, 11).start, end=_slot(1, 10).start)

    with pytest.raises(InvalidRequest):
        scheduler.submit(_request(reversed_slot), actor=LECTURER)
    with pytest.raises(InvalidRequest):
        scheduler.submit(replace(_request(_slot(1, 10)), purpose="   "), actor=LECTURER)

    assert index.active_count() == 0


def test_non_admin_cannot_book_for_someone_else(tmp_path):
    _, _, scheduler, _ = _build_services(tmp_path)
    with pytest.raises(PermissionDenied):
        scheduler.submit(_request(_slot(1, 10), requester="lect-002"), actor=STUDENT)


def test_admin_can_book_on_behalf_of_a_user(tmp_path):
    _, _, scheduler, _ = _build_services(tmp_path)
    group = scheduler.submit(_request(_slot(1, 10), requester="stud-001"), actor=ADMIN)
    assert group.occurrence.requester_id == "stud-001"


def test_unknown_and_unbookable_resources_are_refused(tmp_path):
    _, _, scheduler, _ = _build_services(tmp_path)
    with pytest.raises(ResourceNotFoundError):
        scheduler.submit(_request(_slot(1, 10), resource="res-missing"), actor=LECTURER)
    with pytest.raises(ResourceNotBookableError):
        scheduler.submit(_request(_slot(1, 10), resource="res-van-1"), actor=LECTURER)


def test_resource_with_active_bookings_cannot_be_deleted(tmp_path):
    repository, index, scheduler, approvals = _build_services(tmp_path)
    catalog = CatalogService(repository=repository, index=index)
    booked = scheduler.submit(_request(_slot(3, 10)), actor=LECTURER).occurrence

    with pytest.raises(ResourceInUseError) as excinfo:
        catalog.delete_resource(ADMIN, "res-lab-a")

    assert excinfo.value.active == 1
    assert repository.get_resource("res-lab-a") is not None
    assert index.contains(booked.occurrence_id)

    approvals.approve(ADMIN, booked.occurrence_id)
    approvals.cancel(LECTURER, booked.occurrence_id)
    catalog.delete_resource(ADMIN, "res-lab-a")

    assert repository.get_resource("res-lab-a") is None
    with pytest.raises(ResourceNotFoundError):
        scheduler.submit(_request(_slot(4, 10)), actor=LECTURER)


def test_concurrent_submissions_never_produce_overlapping_approvals(tmp_path):
    _, index, scheduler, approvals = _build_services(tmp_path)
    approved_first = scheduler.submit(_request(_slot(2, 9)), actor=LECTURER)
    approvals.approve(ADMIN, approved_first.occurrence.occurrence_id)
    outcomes: list[str] = []
    outcome_lock = threading.Lock()

    def worker(hour: int) -> None:
        try:
            group = scheduler.submit(_request(_slot(2, hour), requester="stud-001"), actor=STUDENT)
            approvals.approve(ADMIN, group.occurrence.occurrence_id)
            result = "approved"
        except SchedulingError as exc:
            result = type(exc).__name__
        with outcome_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(10 + (n % 3),)) for n in range(12)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5.0)

    approved = index.query("res-lab-a", TimeInterval(
        start=_slot(2, 0).start, end=_slot(3, 0).start,
    ), statuses=[BookingStatus.APPROVED])
    assert len(outcomes) == 12
    assert outcomes.count("approved") == 3
    for i, a in enumerate(approved):
        for b in approved[i + 1:]:
            assert not (a.interval.start < b.interval.end and b.interval.start < a.interval.end)

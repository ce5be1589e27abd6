"""Booking submission: validation, recurrence expansion and conflict-safe commit."""

from __future__ import annotations

import uuid
from typing import Callable, Optional, Sequence

from backend.domain.errors import InvalidRequest, ResourceUnavailable
from backend.domain.intervals import overlaps, validate_interval
from backend.domain.models import (
    Action,
    Actor,
    BookingGroup,
    BookingRequest,
    BookingStatus,
    Occurrence,
    RecurringGroup,
    SingleOccurrence,
    TimeInterval,
    utc_now,
)
from backend.domain.permissions import authorize
from backend.domain.recurrence import expand
from backend.repository.data_repository import DataRepository, PersistenceError
from backend.services.conflict_index import ConflictIndex
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

ResourceCheck = Callable[[str], object]

BLOCKING_STATUSES = frozenset({BookingStatus.APPROVED})


def persist_after_commit(repository: DataRepository, occurrences: Sequence[Occurrence]) -> bool:
    """Write committed occurrences; on failure queue them and keep going.

    The in-memory index stays authoritative, so a failed write never undoes
    the commit. Returns True when everything reached the store.
    """
    try:
        repository.flush_retry_queue()
    except PersistenceError:
        logger.warning("Queued occurrence writes still failing | queued=%s", repository.pending_retry_count())
    try:
        repository.persist_batch(occurrences)
        return True
    except PersistenceError:
        queued = repository.enqueue_retry(occurrences)
        logger.exception(
            "Persisting committed occurrences failed; queued for retry | count=%s | queued=%s",
            len(occurrences),
            queued,
        )
        return False


class BookingScheduler:
    """Accepts or rejects booking requests against the conflict index."""

    def __init__(
        self,
        index: ConflictIndex,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        resource_check: Optional[ResourceCheck] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._index = index
        self._resource_check = resource_check

    def _validate_request(self, request: BookingRequest) -> None:
        if not request.resource_id or not request.resource_id.strip():
            raise InvalidRequest("resource_id must be non-empty")
        if not request.requester_id or not request.requester_id.strip():
            raise InvalidRequest("requester_id must be non-empty")
        validate_interval(request.interval)
        if not request.purpose or not request.purpose.strip():
            raise InvalidRequest("purpose must be non-empty")

    def _expand(self, request: BookingRequest) -> list[TimeInterval]:
        intervals = list(
            expand(
                request.interval,
                request.recurrence,
                max_occurrences=self._settings.recurrence_max_occurrences,
            )
        )
        for previous, current in zip(intervals, intervals[1:]):
            if overlaps(previous, current):
                raise InvalidRequest(
                    "booking duration must be shorter than the recurrence period"
                )
        return intervals

    def submit(self, request: BookingRequest, actor: Optional[Actor] = None) -> BookingGroup:
        if actor is not None:
            authorize(actor, Action.SUBMIT, owner_id=request.requester_id)
        if self._resource_check is not None:
            self._resource_check(request.resource_id)

        self._validate_request(request)
        intervals = self._expand(request)

        group_id = uuid.uuid4().hex
        created_at = utc_now()
        occurrences = [
            Occurrence(
                occurrence_id=uuid.uuid4().hex,
                booking_group_id=group_id,
                resource_id=request.resource_id,
                requester_id=request.requester_id,
                interval=interval,
                status=BookingStatus.PENDING,
                purpose=request.purpose.strip(),
                created_at=created_at,
                updated_at=created_at,
            )
            for interval in intervals
        ]

        with self._index.transaction(request.resource_id) as txn:
            # checked again under the lock that resource deletion also takes
            if self._resource_check is not None:
                self._resource_check(request.resource_id)
            for occurrence in occurrences:
                conflicts = txn.query(occurrence.interval, BLOCKING_STATUSES)
                if conflicts:
                    logger.info(
                        "Booking rejected on conflict | resource=%s | requester=%s | conflicting=%s",
                        request.resource_id,
                        request.requester_id,
                        conflicts[0].occurrence_id,
                    )
                    raise ResourceUnavailable(conflicts[0])
            txn.insert_all(occurrences)

        persist_after_commit(self._repository, occurrences)
        try:
            self._repository.save_audit_entry(
                user_id=actor.uid if actor is not None else request.requester_id,
                action="booking.submit",
                resource=group_id,
                details={
                    "resource_id": request.resource_id,
                    "occurrences": len(occurrences),
                    "recurrence": request.recurrence.frequency.value if request.recurrence else None,
                },
            )
        except PersistenceError:
            logger.exception("Audit entry for booking group %s was not written", group_id)
        logger.info(
            "Booking submitted | group=%s | resource=%s | requester=%s | occurrences=%s",
            group_id,
            request.resource_id,
            request.requester_id,
            len(occurrences),
        )

        if request.recurrence is None:
            return SingleOccurrence(group_id=group_id, occurrence=occurrences[0])
        return RecurringGroup(group_id=group_id, occurrences=tuple(occurrences))

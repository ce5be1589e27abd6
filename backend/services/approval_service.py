"""Booking lifecycle: pending -> approved/rejected, approved -> cancelled."""

from __future__ import annotations

from typing import Optional

from backend.domain.errors import AlreadyBooked, InvalidTransition, OccurrenceNotFound
from backend.domain.models import (
    Action,
    Actor,
    BookingStatus,
    Occurrence,
    OccurrenceId,
    StatusChanged,
)
from backend.domain.permissions import authorize
from backend.repository.data_repository import DataRepository
from backend.services.conflict_index import ConflictIndex, ScheduleTransaction
from backend.services.notification_service import NotificationService
from backend.services.scheduling_service import BLOCKING_STATUSES, persist_after_commit
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


_ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.APPROVED, BookingStatus.REJECTED}),
    BookingStatus.APPROVED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

_ACTION_TARGETS = {
    Action.APPROVE: BookingStatus.APPROVED,
    Action.REJECT: BookingStatus.REJECTED,
    Action.CANCEL: BookingStatus.CANCELLED,
}


def validate_transition(occurrence_id: OccurrenceId, current: BookingStatus, target: BookingStatus) -> None:
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(occurrence_id, current, target)


class ApprovalService:
    """Applies status transitions and mirrors them into the conflict index."""

    def __init__(
        self,
        index: ConflictIndex,
        repository: Optional[DataRepository] = None,
        notifier: Optional[NotificationService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._index = index
        self._notifier = notifier or NotificationService()

    def approve(self, actor: Actor, occurrence_id: OccurrenceId) -> Occurrence:
        return self._transition(actor, occurrence_id, Action.APPROVE)

    def reject(self, actor: Actor, occurrence_id: OccurrenceId) -> Occurrence:
        return self._transition(actor, occurrence_id, Action.REJECT)

    def cancel(self, actor: Actor, occurrence_id: OccurrenceId) -> Occurrence:
        return self._transition(actor, occurrence_id, Action.CANCEL)

    def _not_indexed(self, actor: Actor, occurrence_id: OccurrenceId, action: Action) -> InvalidTransition:
        """Explain why an occurrence missing from the active set cannot move."""
        stored = self._repository.get_occurrence(occurrence_id)
        if stored is None:
            raise OccurrenceNotFound(occurrence_id)
        authorize(actor, action, owner_id=stored.requester_id)
        return InvalidTransition(occurrence_id, stored.status, _ACTION_TARGETS[action])

    def _apply(
        self,
        txn: ScheduleTransaction,
        actor: Actor,
        current: Occurrence,
        action: Action,
        target: BookingStatus,
    ) -> Occurrence:
        """Check and commit one transition while the resource's write lock is held."""
        authorize(actor, action, owner_id=current.requester_id)
        validate_transition(current.occurrence_id, current.status, target)

        if target is BookingStatus.APPROVED:
            competing = [
                item
                for item in txn.query(current.interval, BLOCKING_STATUSES)
                if item.occurrence_id != current.occurrence_id
            ]
            if competing:
                logger.info(
                    "Approval blocked | occurrence=%s | conflicting=%s",
                    current.occurrence_id,
                    competing[0].occurrence_id,
                )
                raise AlreadyBooked(current.occurrence_id, competing[0])

        updated = current.with_status(target)
        txn.replace(updated)
        return updated

    def _transition(self, actor: Actor, occurrence_id: OccurrenceId, action: Action) -> Occurrence:
        authorize(actor, action)
        target = _ACTION_TARGETS[action]

        resource_id = self._index.resource_of(occurrence_id)
        if resource_id is None:
            raise self._not_indexed(actor, occurrence_id, action)

        with self._index.transaction(resource_id) as txn:
            current = txn.get(occurrence_id)
            if current is not None:
                updated = self._apply(txn, actor, current, action, target)
        if current is None:
            # rejected or cancelled between lookup and lock
            raise self._not_indexed(actor, occurrence_id, action)

        persist_after_commit(self._repository, [updated])
        self._notifier.publish(
            StatusChanged(
                occurrence_id=occurrence_id,
                booking_group_id=updated.booking_group_id,
                resource_id=updated.resource_id,
                requester_id=updated.requester_id,
                old_status=current.status,
                new_status=target,
                actor_id=actor.uid,
            )
        )
        logger.info(
            "Booking status changed | occurrence=%s | %s -> %s | actor=%s",
            occurrence_id,
            current.status.value,
            target.value,
            actor.uid,
        )
        return updated

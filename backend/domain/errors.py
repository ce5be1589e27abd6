"""Error taxonomy for booking scheduling and approval."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from backend.domain.models import BookingStatus, Occurrence


class SchedulingError(Exception):
    """Base class for every scheduling-core failure."""


class InvalidRequest(SchedulingError):
    """Malformed booking input: bad interval, blank purpose, bad recurrence."""


class InvalidInterval(InvalidRequest):
    """Raised when an interval does not satisfy start < end."""


class RecurrenceTooLong(SchedulingError):
    """Raised when a recurrence would expand past the occurrence ceiling."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Recurrence expands to more than {limit} occurrences; choose an earlier end date"
        )
        self.limit = limit


class ResourceUnavailable(SchedulingError):
    """Raised at submission when a slot collides with an approved occurrence."""

    def __init__(self, conflicting: "Occurrence") -> None:
        super().__init__(
            "Resource "
            f"{conflicting.resource_id} is already booked from "
            f"{conflicting.interval.start.isoformat()} to {conflicting.interval.end.isoformat()} "
            f"(occurrence {conflicting.occurrence_id})"
        )
        self.conflicting = conflicting


class AlreadyBooked(SchedulingError):
    """Raised at approval when another approved occurrence holds the slot."""

    def __init__(self, occurrence_id: str, conflicting: "Occurrence") -> None:
        super().__init__(
            f"Occurrence {occurrence_id} overlaps approved occurrence "
            f"{conflicting.occurrence_id}; reject it or ask the requester to resubmit"
        )
        self.occurrence_id = occurrence_id
        self.conflicting = conflicting


class DuplicateOccurrence(SchedulingError):
    """Raised when an occurrence id is inserted into the index twice."""

    def __init__(self, occurrence_id: str) -> None:
        super().__init__(f"Occurrence {occurrence_id} is already indexed")
        self.occurrence_id = occurrence_id


class InvalidTransition(SchedulingError):
    """Raised for a status change the lifecycle does not allow."""

    def __init__(
        self,
        occurrence_id: str,
        current: "BookingStatus",
        target: "BookingStatus",
    ) -> None:
        super().__init__(
            f"Invalid booking status transition for {occurrence_id}: "
            f"{current.value} -> {target.value}"
        )
        self.occurrence_id = occurrence_id
        self.current = current
        self.target = target


class PermissionDenied(SchedulingError):
    """Raised when the actor's role lacks the capability for an action."""


class OccurrenceNotFound(SchedulingError):
    """Raised when an occurrence id is unknown to both index and store."""

    def __init__(self, occurrence_id: str, detail: Optional[str] = None) -> None:
        super().__init__(detail or f"Occurrence {occurrence_id} does not exist")
        self.occurrence_id = occurrence_id

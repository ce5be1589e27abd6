"""Fire-and-forget dispatch of booking status changes."""

from __future__ import annotations

from threading import Lock
from typing import Callable, Optional

from backend.domain.models import BookingStatus, StatusChanged
from backend.repository.data_repository import DataRepository
from backend.utils.logger import get_logger


logger = get_logger(__name__)

StatusListener = Callable[[StatusChanged], None]

_TITLES = {
    BookingStatus.APPROVED: "Booking approved",
    BookingStatus.REJECTED: "Booking rejected",
    BookingStatus.CANCELLED: "Booking cancelled",
}


class NotificationService:
    """Fans ``StatusChanged`` events out to subscribed listeners.

    A failing listener is logged and skipped; publishing never raises.
    """

    def __init__(self, repository: Optional[DataRepository] = None) -> None:
        self._listeners: list[StatusListener] = []
        self._lock = Lock()
        if repository is not None:
            self.subscribe(InboxListener(repository))
            self.subscribe(AuditListener(repository))

    def subscribe(self, listener: StatusListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StatusListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event: StatusChanged) -> int:
        """Deliver to every listener; returns how many succeeded."""
        with self._lock:
            listeners = list(self._listeners)
        delivered = 0
        for listener in listeners:
            try:
                listener(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Status listener failed | occurrence=%s | %s -> %s",
                    event.occurrence_id,
                    event.old_status.value,
                    event.new_status.value,
                )
        return delivered


class InboxListener:
    """Stores an in-app notification for the requester."""

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def __call__(self, event: StatusChanged) -> None:
        title = _TITLES.get(event.new_status, "Booking updated")
        self._repository.save_notification(
            user_id=event.requester_id,
            title=title,
            message=(
                f"Your booking {event.occurrence_id} for resource {event.resource_id} "
                f"changed from {event.old_status.value} to {event.new_status.value}."
            ),
            notification_type="approval",
        )


class AuditListener:
    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def __call__(self, event: StatusChanged) -> None:
        self._repository.save_audit_entry(
            user_id=event.actor_id,
            action=f"booking.{event.new_status.value}",
            resource=event.occurrence_id,
            details={
                "booking_group_id": event.booking_group_id,
                "resource_id": event.resource_id,
                "old_status": event.old_status.value,
                "new_status": event.new_status.value,
            },
        )

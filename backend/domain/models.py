"""Domain models for resource booking, recurrence and approval."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union


ResourceId = str
UserId = str
OccurrenceId = str
BookingGroupId = str


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TimeInterval:
    """Half-open range ``[start, end)``."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def shifted(self, delta: timedelta) -> "TimeInterval":
        return TimeInterval(start=self.start + delta, end=self.end + delta)


class RecurrenceFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurrenceRule:
    """Repeat a base interval until ``until``.

    ``until`` may be a datetime or a calendar date; a date covers the whole day.
    """

    frequency: RecurrenceFrequency
    until: Union[datetime, date]


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.APPROVED})
TERMINAL_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED})


class Role(str, Enum):
    ADMIN = "admin"
    LECTURER = "lecturer"
    STUDENT = "student"


class Action(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as reported by the identity provider."""

    uid: UserId
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class BookingRequest:
    requester_id: UserId
    resource_id: ResourceId
    interval: TimeInterval
    purpose: str
    recurrence: Optional[RecurrenceRule] = None


@dataclass(frozen=True)
class Occurrence:
    occurrence_id: OccurrenceId
    booking_group_id: BookingGroupId
    resource_id: ResourceId
    requester_id: UserId
    interval: TimeInterval
    status: BookingStatus
    purpose: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def with_status(self, status: BookingStatus) -> "Occurrence":
        return replace(self, status=status, updated_at=utc_now())


@dataclass(frozen=True)
class SingleOccurrence:
    group_id: BookingGroupId
    occurrence: Occurrence

    @property
    def occurrences(self) -> tuple[Occurrence, ...]:
        return (self.occurrence,)


@dataclass(frozen=True)
class RecurringGroup:
    group_id: BookingGroupId
    occurrences: tuple[Occurrence, ...]


BookingGroup = Union[SingleOccurrence, RecurringGroup]


@dataclass(frozen=True)
class StatusChanged:
    occurrence_id: OccurrenceId
    booking_group_id: BookingGroupId
    resource_id: ResourceId
    requester_id: UserId
    old_status: BookingStatus
    new_status: BookingStatus
    actor_id: UserId
    occurred_at: datetime = field(default_factory=utc_now)


class ResourceType(str, Enum):
    ROOM = "room"
    LAB = "lab"
    EQUIPMENT = "equipment"
    VEHICLE = "vehicle"


class ResourceStatus(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Resource:
    resource_id: ResourceId
    name: str
    resource_type: ResourceType
    location: str
    capacity: int
    status: ResourceStatus = ResourceStatus.AVAILABLE
    description: str = ""
    features: tuple[str, ...] = ()


@dataclass(frozen=True)
class UserProfile:
    uid: UserId
    email: str
    display_name: str
    role: Role
    department: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class Notification:
    notification_id: int
    user_id: UserId
    title: str
    message: str
    notification_type: str
    read: bool
    created_at: str


@dataclass(frozen=True)
class AuditEntry:
    audit_id: int
    user_id: UserId
    action: str
    resource: str
    details: str
    timestamp: str

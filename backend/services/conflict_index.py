"""Per-resource index of active occurrences used for overlap detection.

Each resource keeps its occurrences sorted by ``(start, occurrence_id)`` next
to a prefix "max end" watermark. A query bisects the watermark to skip every
entry that ends before the probe starts and bisects the starts to stop at the
probe's end, so only candidates that can overlap are inspected.

Mutations on one resource are serialized by that resource's
:class:`ReadWriteLock`; different resources never contend.
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Iterable, Iterator, Optional

from backend.domain.errors import DuplicateOccurrence, InvalidRequest
from backend.domain.models import (
    ACTIVE_STATUSES,
    BookingStatus,
    Occurrence,
    OccurrenceId,
    ResourceId,
    TimeInterval,
)
from backend.utils.locks import ReadWriteLock
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.tzinfo.utcoffset(value) is not None


def _sort_key(occurrence: Occurrence) -> tuple[datetime, str]:
    return (occurrence.interval.start, occurrence.occurrence_id)


class ResourceSchedule:
    """Ordered active occurrences for one resource. Not thread-safe on its own."""

    def __init__(self, resource_id: ResourceId) -> None:
        self.resource_id = resource_id
        self._entries: list[Occurrence] = []
        self._keys: list[tuple[datetime, str]] = []
        self._max_ends: list[datetime] = []
        self._by_id: dict[OccurrenceId, Occurrence] = {}
        self._timezone_aware: Optional[bool] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, occurrence_id: object) -> bool:
        return occurrence_id in self._by_id

    def occurrences(self) -> list[Occurrence]:
        return list(self._entries)

    def get(self, occurrence_id: OccurrenceId) -> Optional[Occurrence]:
        return self._by_id.get(occurrence_id)

    def check_awareness(self, interval: TimeInterval) -> None:
        if self._timezone_aware is None:
            return
        if _is_aware(interval.start) != self._timezone_aware:
            raise InvalidRequest(
                f"timestamps for resource {self.resource_id} must all be "
                + ("timezone-aware" if self._timezone_aware else "naive")
            )

    def query(
        self,
        interval: TimeInterval,
        statuses: Iterable[BookingStatus] = ACTIVE_STATUSES,
    ) -> list[Occurrence]:
        if not self._entries:
            return []
        self.check_awareness(interval)
        wanted = frozenset(statuses)
        lower = bisect_right(self._max_ends, interval.start)
        upper = bisect_left(self._keys, (interval.end, ""))
        return [
            entry
            for entry in self._entries[lower:upper]
            if entry.interval.end > interval.start and entry.status in wanted
        ]

    def insert(self, occurrence: Occurrence) -> None:
        if occurrence.occurrence_id in self._by_id:
            raise DuplicateOccurrence(occurrence.occurrence_id)
        if not occurrence.status.is_active:
            raise InvalidRequest(
                f"only pending or approved occurrences can be indexed, got {occurrence.status.value}"
            )
        self.check_awareness(occurrence.interval)
        if self._timezone_aware is None:
            self._timezone_aware = _is_aware(occurrence.interval.start)

        key = _sort_key(occurrence)
        position = bisect_left(self._keys, key)
        self._keys.insert(position, key)
        self._entries.insert(position, occurrence)
        self._max_ends.insert(position, occurrence.interval.end)
        self._by_id[occurrence.occurrence_id] = occurrence
        self._refresh_watermark(position)

    def remove(self, occurrence_id: OccurrenceId) -> Optional[Occurrence]:
        occurrence = self._by_id.pop(occurrence_id, None)
        if occurrence is None:
            return None
        position = bisect_left(self._keys, _sort_key(occurrence))
        del self._keys[position]
        del self._entries[position]
        del self._max_ends[position]
        self._refresh_watermark(position)
        if not self._entries:
            self._timezone_aware = None
        return occurrence

    def replace(self, occurrence: Occurrence) -> None:
        """Swap in a new version of an indexed occurrence (status change)."""
        current = self._by_id.get(occurrence.occurrence_id)
        if current is None:
            raise KeyError(occurrence.occurrence_id)
        if not occurrence.status.is_active:
            self.remove(occurrence.occurrence_id)
            return
        if current.interval != occurrence.interval:
            self.remove(occurrence.occurrence_id)
            self.insert(occurrence)
            return
        position = bisect_left(self._keys, _sort_key(current))
        self._entries[position] = occurrence
        self._by_id[occurrence.occurrence_id] = occurrence

    def _refresh_watermark(self, position: int) -> None:
        running = self._max_ends[position - 1] if position > 0 else None
        for index in range(position, len(self._entries)):
            end = self._entries[index].interval.end
            if running is None or end > running:
                running = end
            self._max_ends[index] = running


class ScheduleTransaction:
    """Write view over one resource's schedule, valid while its lock is held."""

    def __init__(self, index: "ConflictIndex", schedule: ResourceSchedule) -> None:
        self._index = index
        self._schedule = schedule

    @property
    def resource_id(self) -> ResourceId:
        return self._schedule.resource_id

    def occurrences(self) -> list[Occurrence]:
        return self._schedule.occurrences()

    def get(self, occurrence_id: OccurrenceId) -> Optional[Occurrence]:
        return self._schedule.get(occurrence_id)

    def query(
        self,
        interval: TimeInterval,
        statuses: Iterable[BookingStatus] = ACTIVE_STATUSES,
    ) -> list[Occurrence]:
        return self._schedule.query(interval, statuses)

    def insert_all(self, occurrences: Iterable[Occurrence]) -> None:
        """Insert every occurrence or none of them."""
        batch = list(occurrences)
        seen: set[OccurrenceId] = set()
        for occurrence in batch:
            if occurrence.resource_id != self.resource_id:
                raise InvalidRequest(
                    f"occurrence {occurrence.occurrence_id} belongs to resource "
                    f"{occurrence.resource_id}, not {self.resource_id}"
                )
            if occurrence.occurrence_id in seen or self._index.contains(occurrence.occurrence_id):
                raise DuplicateOccurrence(occurrence.occurrence_id)
            if not occurrence.status.is_active:
                raise InvalidRequest(
                    f"only pending or approved occurrences can be indexed, got {occurrence.status.value}"
                )
            seen.add(occurrence.occurrence_id)

        if len({_is_aware(item.interval.start) for item in batch}) > 1:
            raise InvalidRequest("timestamps in one batch must all be naive or all be timezone-aware")
        if batch:
            self._schedule.check_awareness(batch[0].interval)

        for occurrence in batch:
            self._schedule.insert(occurrence)
        self._index._register(batch)

    def insert(self, occurrence: Occurrence) -> None:
        self.insert_all([occurrence])

    def remove(self, occurrence_id: OccurrenceId) -> Optional[Occurrence]:
        removed = self._schedule.remove(occurrence_id)
        if removed is not None:
            self._index._unregister([occurrence_id])
        return removed

    def replace(self, occurrence: Occurrence) -> None:
        self._schedule.replace(occurrence)
        if not occurrence.status.is_active:
            self._index._unregister([occurrence.occurrence_id])


class ConflictIndex:
    """Process-wide active set, partitioned and locked per resource."""

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._schedules: dict[ResourceId, ResourceSchedule] = {}
        self._locks: dict[ResourceId, ReadWriteLock] = {}
        self._resource_by_occurrence: dict[OccurrenceId, ResourceId] = {}

    def _partition(self, resource_id: ResourceId) -> tuple[ResourceSchedule, ReadWriteLock]:
        with self._registry_lock:
            schedule = self._schedules.get(resource_id)
            if schedule is None:
                schedule = ResourceSchedule(resource_id)
                self._schedules[resource_id] = schedule
                self._locks[resource_id] = ReadWriteLock()
            return schedule, self._locks[resource_id]

    def _register(self, occurrences: Iterable[Occurrence]) -> None:
        with self._registry_lock:
            for occurrence in occurrences:
                self._resource_by_occurrence[occurrence.occurrence_id] = occurrence.resource_id

    def _unregister(self, occurrence_ids: Iterable[OccurrenceId]) -> None:
        with self._registry_lock:
            for occurrence_id in occurrence_ids:
                self._resource_by_occurrence.pop(occurrence_id, None)

    def contains(self, occurrence_id: OccurrenceId) -> bool:
        with self._registry_lock:
            return occurrence_id in self._resource_by_occurrence

    def resource_of(self, occurrence_id: OccurrenceId) -> Optional[ResourceId]:
        with self._registry_lock:
            return self._resource_by_occurrence.get(occurrence_id)

    def resource_ids(self) -> list[ResourceId]:
        with self._registry_lock:
            return sorted(self._schedules)

    @contextmanager
    def transaction(self, resource_id: ResourceId) -> Iterator[ScheduleTransaction]:
        """Hold the resource's write lock for a multi-step check-and-commit."""
        schedule, lock = self._partition(resource_id)
        with lock.write_locked():
            yield ScheduleTransaction(self, schedule)

    def query(
        self,
        resource_id: ResourceId,
        interval: TimeInterval,
        statuses: Iterable[BookingStatus] = ACTIVE_STATUSES,
    ) -> list[Occurrence]:
        schedule, lock = self._partition(resource_id)
        with lock.read_locked():
            return schedule.query(interval, statuses)

    def get(self, occurrence_id: OccurrenceId) -> Optional[Occurrence]:
        resource_id = self.resource_of(occurrence_id)
        if resource_id is None:
            return None
        schedule, lock = self._partition(resource_id)
        with lock.read_locked():
            return schedule.get(occurrence_id)

    def snapshot(self, resource_id: ResourceId) -> list[Occurrence]:
        schedule, lock = self._partition(resource_id)
        with lock.read_locked():
            return schedule.occurrences()

    def insert(self, occurrence: Occurrence) -> None:
        with self.transaction(occurrence.resource_id) as txn:
            txn.insert(occurrence)

    def remove(self, occurrence_id: OccurrenceId) -> None:
        resource_id = self.resource_of(occurrence_id)
        if resource_id is None:
            return
        with self.transaction(resource_id) as txn:
            txn.remove(occurrence_id)

    def load(self, resource_id: ResourceId, occurrences: Iterable[Occurrence]) -> int:
        """Seed a resource's active set from persisted state at startup."""
        active = [item for item in occurrences if item.status.is_active]
        with self.transaction(resource_id) as txn:
            txn.insert_all(active)
        logger.info("Conflict index loaded | resource=%s | occurrences=%s", resource_id, len(active))
        return len(active)

    def active_count(self) -> int:
        with self._registry_lock:
            return len(self._resource_by_occurrence)

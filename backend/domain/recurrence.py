"""Lazy expansion of recurring bookings into concrete intervals.

Monthly steps are always measured from the base start, so a series that
starts on the 31st lands on the last day of short months and returns to the
31st afterwards (Jan 31 -> Feb 29 -> Mar 31) instead of drifting.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional

from dateutil.relativedelta import relativedelta

from backend.domain.errors import InvalidRequest, RecurrenceTooLong
from backend.domain.models import RecurrenceFrequency, RecurrenceRule, TimeInterval


MAX_OCCURRENCES = 366

_FIXED_STEPS = {
    RecurrenceFrequency.DAILY: timedelta(days=1),
    RecurrenceFrequency.WEEKLY: timedelta(days=7),
}


def until_limit(base: TimeInterval, rule: RecurrenceRule) -> datetime:
    """Resolve ``rule.until`` to the last instant a translated start may take."""
    if isinstance(rule.until, datetime):
        return rule.until
    if isinstance(rule.until, date):
        return datetime.combine(rule.until, time.max, tzinfo=base.start.tzinfo)
    raise InvalidRequest("recurrence until must be a date or datetime")


def translate(base: TimeInterval, frequency: RecurrenceFrequency, steps: int) -> TimeInterval:
    if steps == 0:
        return base
    if frequency is RecurrenceFrequency.MONTHLY:
        start = base.start + relativedelta(months=steps)
        return TimeInterval(start=start, end=start + base.duration)
    return base.shifted(_FIXED_STEPS[frequency] * steps)


def validate_rule(base: TimeInterval, rule: RecurrenceRule) -> None:
    if not isinstance(rule.frequency, RecurrenceFrequency):
        raise InvalidRequest(f"unsupported recurrence frequency: {rule.frequency!r}")
    limit = until_limit(base, rule)
    try:
        after_start = limit > base.start
    except TypeError as exc:
        raise InvalidRequest(
            "recurrence until must match the booking's timezone awareness"
        ) from exc
    if not after_start:
        raise InvalidRequest("recurrence until must be after the booking start")


class RecurrenceExpansion:
    """Restartable lazy sequence of occurrence intervals.

    Iterating raises :class:`RecurrenceTooLong` once more than ``max_occurrences``
    intervals would be produced.
    """

    def __init__(
        self,
        base: TimeInterval,
        rule: Optional[RecurrenceRule] = None,
        max_occurrences: int = MAX_OCCURRENCES,
    ) -> None:
        if rule is not None:
            validate_rule(base, rule)
        self._base = base
        self._rule = rule
        self._max_occurrences = min(max_occurrences, MAX_OCCURRENCES)

    @property
    def base(self) -> TimeInterval:
        return self._base

    @property
    def rule(self) -> Optional[RecurrenceRule]:
        return self._rule

    def __iter__(self) -> Iterator[TimeInterval]:
        yield self._base
        if self._rule is None:
            return

        limit = until_limit(self._base, self._rule)
        steps = 1
        while True:
            candidate = translate(self._base, self._rule.frequency, steps)
            if candidate.start > limit:
                return
            if steps >= self._max_occurrences:
                raise RecurrenceTooLong(self._max_occurrences)
            yield candidate
            steps += 1


def expand(
    base: TimeInterval,
    rule: Optional[RecurrenceRule] = None,
    max_occurrences: int = MAX_OCCURRENCES,
) -> RecurrenceExpansion:
    return RecurrenceExpansion(base, rule, max_occurrences=max_occurrences)

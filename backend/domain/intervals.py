"""Predicates over half-open time intervals."""

from __future__ import annotations

from backend.domain.errors import InvalidInterval
from backend.domain.models import TimeInterval


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """True when the two ranges share any instant; touching ends do not count."""
    return a.start < b.end and b.start < a.end


def contains(outer: TimeInterval, inner: TimeInterval) -> bool:
    return outer.start <= inner.start and inner.end <= outer.end


def validate_interval(interval: TimeInterval) -> None:
    try:
        ordered = interval.start < interval.end
    except TypeError as exc:
        # naive and timezone-aware datetimes cannot be compared
        raise InvalidInterval("start and end must both be naive or both be timezone-aware") from exc
    if not ordered:
        raise InvalidInterval(
            f"interval start {interval.start.isoformat()} must be before end {interval.end.isoformat()}"
        )

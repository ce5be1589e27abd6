"""Domain-level validation rules for scheduling configuration."""

from __future__ import annotations

from dataclasses import dataclass

from backend.domain.recurrence import MAX_OCCURRENCES


@dataclass(frozen=True)
class SchedulingConfig:
    recurrence_max_occurrences: int
    utilization_window_days: int
    bookable_hours_per_day: float
    recent_bookings_limit: int


def validate_scheduling_config(config: SchedulingConfig) -> None:
    if not 1 <= config.recurrence_max_occurrences <= MAX_OCCURRENCES:
        raise ValueError(f"recurrence_max_occurrences must be between 1 and {MAX_OCCURRENCES}")
    if config.utilization_window_days <= 0:
        raise ValueError("utilization_window_days must be > 0")
    if not 0.0 < config.bookable_hours_per_day <= 24.0:
        raise ValueError("bookable_hours_per_day must be in (0, 24]")
    if config.recent_bookings_limit <= 0:
        raise ValueError("recent_bookings_limit must be > 0")

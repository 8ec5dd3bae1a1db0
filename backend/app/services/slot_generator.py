from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from app import settings
from app.models import AvailabilityRule, CandidateSlot
from app.services.errors import SchedulingValidationError
from app.services.time_codec import to_minutes, to_time_string


@dataclass(frozen=True)
class AvailabilityWindow:
    start: int
    end: int
    interval: int


def select_day_rules(rules: Iterable[AvailabilityRule], day: str, day_of_week: int) -> List[AvailabilityRule]:
    """Rules governing one calendar day.

    Date-specific rules fully replace the weekly rules for that date, including
    when every date-specific rule is marked unavailable (a closed day).
    """
    rules = list(rules)
    specific = [rule for rule in rules if rule.specific_date == day]
    if specific:
        return specific
    return [rule for rule in rules if rule.specific_date is None and rule.day_of_week == day_of_week]


def rule_windows(rules: Iterable[AvailabilityRule]) -> List[AvailabilityWindow]:
    windows: List[AvailabilityWindow] = []
    for rule in rules:
        if not rule.is_available:
            continue
        start = to_minutes(rule.start_time, field="start_time")
        end = to_minutes(rule.end_time, field="end_time")
        if end <= start:
            continue
        windows.append(AvailabilityWindow(start=start, end=end, interval=max(1, rule.interval_minutes or 1)))
    windows.sort(key=lambda window: (window.start, window.end))
    return windows


def generate_slots(
    windows: Sequence[AvailabilityWindow],
    service_duration: int,
    slot_interval: Optional[int] = None,
) -> List[CandidateSlot]:
    """Step through each window and emit every [t, t + duration) that fits.

    An explicit ``slot_interval`` wins over the interval stored on the rule.
    Slots from overlapping windows are merged; a start time is emitted once.
    """
    if service_duration <= 0:
        raise SchedulingValidationError(
            "Service duration must be positive",
            field="service_duration",
            value=service_duration,
        )
    seen: set[int] = set()
    starts: List[int] = []
    for window in sorted(windows, key=lambda item: (item.start, item.end)):
        step = max(1, slot_interval or window.interval or settings.DEFAULT_SLOT_INTERVAL)
        cursor = window.start
        while cursor + service_duration <= window.end:
            if cursor not in seen:
                seen.add(cursor)
                starts.append(cursor)
            cursor += step
    starts.sort()
    return [
        CandidateSlot(
            start_time=to_time_string(start),
            end_time=to_time_string(start + service_duration),
            is_available=True,
            service_duration=service_duration,
        )
        for start in starts
    ]

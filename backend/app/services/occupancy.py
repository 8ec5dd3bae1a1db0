from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from app.models import Appointment, BlockedRange, CandidateSlot, ProviderBreak
from app.services.time_codec import to_minutes

INACTIVE_APPOINTMENT_STATUSES = {"canceled", "no_show"}


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open [start, end) in minutes since midnight."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def overlaps(start: int, end: int, other_start: int, other_end: int) -> bool:
    return start < other_end and end > other_start


def fits(interval: Interval, duration: int) -> bool:
    return interval.length >= duration


def applicable_breaks(breaks: Iterable[ProviderBreak], day: str, day_of_week: int) -> List[ProviderBreak]:
    selected = []
    for item in breaks:
        if item.date:
            if item.date == day:
                selected.append(item)
        elif item.day_of_week == day_of_week:
            selected.append(item)
    return selected


def build_busy_intervals(
    appointments: Iterable[Appointment] = (),
    blocked_ranges: Iterable[BlockedRange] = (),
    breaks: Iterable[ProviderBreak] = (),
) -> List[Interval]:
    """Merge every occupancy source into one sorted list.

    Canceled and no-show appointments do not occupy time. Breaks must already
    be narrowed to the day (see ``applicable_breaks``).
    """
    busy: List[Interval] = []
    for appointment in appointments:
        if appointment.status in INACTIVE_APPOINTMENT_STATUSES:
            continue
        busy.append(Interval(to_minutes(appointment.start_time), to_minutes(appointment.end_time)))
    for blocked in blocked_ranges:
        busy.append(Interval(to_minutes(blocked.start_time), to_minutes(blocked.end_time)))
    for item in breaks:
        busy.append(Interval(to_minutes(item.start_time), to_minutes(item.end_time)))
    return sorted(interval for interval in busy if interval.length > 0)


def free_intervals(avail_start: int, avail_end: int, busy: Sequence[Interval]) -> List[Interval]:
    """Subtract busy intervals from [avail_start, avail_end)."""
    free: List[Interval] = []
    cursor = avail_start
    for interval in sorted(busy):
        if cursor >= avail_end:
            break
        if interval.end <= cursor or interval.start >= avail_end:
            continue
        if interval.start > cursor:
            free.append(Interval(cursor, interval.start))
        cursor = max(cursor, interval.end)
    if cursor < avail_end:
        free.append(Interval(cursor, avail_end))
    return free


def first_conflict(start: int, end: int, busy: Sequence[Interval]) -> Optional[Interval]:
    for interval in busy:
        if overlaps(start, end, interval.start, interval.end):
            return interval
    return None


def mark_availability(slots: Sequence[CandidateSlot], busy: Sequence[Interval]) -> List[CandidateSlot]:
    marked: List[CandidateSlot] = []
    for slot in slots:
        start, end = to_minutes(slot.start_time), to_minutes(slot.end_time)
        if slot.is_available and first_conflict(start, end, busy) is not None:
            slot = slot.model_copy(update={"is_available": False})
        marked.append(slot)
    return marked

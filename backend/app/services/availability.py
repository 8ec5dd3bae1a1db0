import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Sequence

from app import settings
from app.models import (
    BestDay,
    BestDaysResponse,
    CandidateSlot,
    FreeInterval,
    FreeIntervalsResponse,
    SlotCheckRequest,
    SlotCheckResponse,
    TimeSlotsResponse,
)
from app.services.durations import DurationAggregator, DurationSummary
from app.services.errors import SchedulingValidationError
from app.services.occupancy import (
    Interval,
    applicable_breaks,
    build_busy_intervals,
    fits,
    free_intervals,
    mark_availability,
)
from app.services.schedule_store import DayFacts, ScheduleStore, schedule_store
from app.services.slot_generator import AvailabilityWindow, generate_slots, rule_windows, select_day_rules
from app.services.time_codec import parse_date, to_minutes, to_time_string
from app.services.timezones import resolve_day_of_week, today_in

logger = logging.getLogger(__name__)

TIME_OF_DAY_RANGES = {
    "morning": (6 * 60, 12 * 60),
    "afternoon": (12 * 60, 18 * 60),
}
MAX_BEST_DAYS = 60


def time_of_day_of(start_time: str) -> str:
    minutes = to_minutes(start_time)
    for label, (start, end) in TIME_OF_DAY_RANGES.items():
        if start <= minutes < end:
            return label
    return "evening"


def filter_time_of_day(slots: Sequence[CandidateSlot], time_of_day: Optional[str]) -> List[CandidateSlot]:
    if not time_of_day:
        return list(slots)
    return [slot for slot in slots if time_of_day_of(slot.start_time) == time_of_day]


@dataclass
class DaySchedule:
    provider_id: str
    date: str
    day_of_week: int
    timezone: str
    windows: List[AvailabilityWindow] = field(default_factory=list)
    busy: List[Interval] = field(default_factory=list)
    slots: List[CandidateSlot] = field(default_factory=list)

    @property
    def available_slots(self) -> List[CandidateSlot]:
        return [slot for slot in self.slots if slot.is_available]

    def free_intervals(self) -> List[Interval]:
        free: List[Interval] = []
        for window in self.windows:
            free.extend(free_intervals(window.start, window.end, self.busy))
        return free

    def has_room_for(self, duration: int) -> bool:
        return any(fits(interval, duration) for interval in self.free_intervals())


def compute_day_schedule(
    facts: DayFacts,
    day: str,
    service_duration: int,
    slot_interval: Optional[int] = None,
) -> DaySchedule:
    """Rules, occupancy and slot stepping for one provider day.

    Pure over ``facts`` so the booking path can run it inside its own
    transaction.
    """
    tz_name = facts.provider.timezone or settings.DEFAULT_TIMEZONE
    day_of_week = resolve_day_of_week(day, tz_name)
    windows = rule_windows(select_day_rules(facts.rules, day, day_of_week))
    busy = build_busy_intervals(
        facts.appointments,
        facts.blocked_ranges,
        applicable_breaks(facts.breaks, day, day_of_week),
    )
    slots = generate_slots(windows, service_duration, slot_interval)
    return DaySchedule(
        provider_id=facts.provider.id,
        date=day,
        day_of_week=day_of_week,
        timezone=tz_name,
        windows=windows,
        busy=busy,
        slots=mark_availability(slots, busy),
    )


class AvailabilityEngine:
    def __init__(self, store: ScheduleStore, durations: Optional[DurationAggregator] = None) -> None:
        self.store = store
        self.durations = durations or DurationAggregator(store)

    def resolve_duration(
        self,
        provider_id: str,
        service_ids: Sequence[str],
        day: Optional[str],
        duration: Optional[int] = None,
    ) -> DurationSummary:
        if duration is not None:
            if duration <= 0:
                raise SchedulingValidationError("duration must be positive", field="duration", value=duration)
            return DurationSummary(total=duration)
        return self.durations.aggregate(provider_id, service_ids, day)

    def day_schedule(
        self,
        provider_id: str,
        day: str,
        service_duration: int,
        slot_interval: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> DaySchedule:
        normalized_day = parse_date(day).isoformat()
        facts = self.store.load_day_facts(provider_id, normalized_day, timeout=timeout)
        return compute_day_schedule(facts, normalized_day, service_duration, slot_interval)

    def time_slots(
        self,
        provider_id: str,
        day: str,
        service_ids: Sequence[str] = (),
        duration: Optional[int] = None,
        slot_interval: Optional[int] = None,
        time_of_day: Optional[str] = None,
    ) -> TimeSlotsResponse:
        summary = self.resolve_duration(provider_id, service_ids, day, duration)
        schedule = self.day_schedule(provider_id, day, summary.total, slot_interval)
        slots = filter_time_of_day(schedule.slots, time_of_day)
        return TimeSlotsResponse(
            provider_id=provider_id,
            date=schedule.date,
            day_of_week=schedule.day_of_week,
            timezone=schedule.timezone,
            service_duration=summary.total,
            services=summary.services,
            slots=slots,
            available_count=sum(1 for slot in slots if slot.is_available),
            total_count=len(slots),
        )

    def free_intervals(self, provider_id: str, day: str) -> FreeIntervalsResponse:
        schedule = self.day_schedule(provider_id, day, service_duration=1, slot_interval=None)
        return FreeIntervalsResponse(
            provider_id=provider_id,
            date=schedule.date,
            day_of_week=schedule.day_of_week,
            intervals=[
                FreeInterval(
                    start_time=to_time_string(interval.start),
                    end_time=to_time_string(interval.end),
                    duration=interval.length,
                )
                for interval in schedule.free_intervals()
            ],
        )

    def check_slots(self, provider_id: str, request: SlotCheckRequest) -> SlotCheckResponse:
        """Revalidate slots a client is holding against a fresh computation."""
        summary = self.resolve_duration(provider_id, request.service_ids, request.date, request.duration)
        schedule = self.day_schedule(provider_id, request.date, summary.total, request.slot_interval)
        by_start = {slot.start_time: slot for slot in schedule.slots}
        available: List[CandidateSlot] = []
        for requested in request.slots:
            to_minutes(requested.start_time, field="start_time")
            slot = by_start.get(requested.start_time)
            if slot is None or not slot.is_available:
                continue
            if requested.end_time and requested.end_time != slot.end_time:
                continue
            available.append(slot)
        return SlotCheckResponse(
            provider_id=provider_id,
            date=schedule.date,
            service_duration=summary.total,
            available_slots=available,
            requested_count=len(request.slots),
            available_count=len(available),
            unavailable_count=len(request.slots) - len(available),
        )

    def best_days(
        self,
        provider_id: str,
        service_ids: Sequence[str] = (),
        days: int = 14,
        start_date: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> BestDaysResponse:
        """Scan the next ``days`` calendar days and order them by free slot count."""
        if days < 1 or days > MAX_BEST_DAYS:
            raise SchedulingValidationError(f"days must be between 1 and {MAX_BEST_DAYS}", field="days", value=days)
        provider = self.store.get_provider(provider_id)
        first_day = parse_date(start_date) if start_date else today_in(provider.timezone)
        summary = self.resolve_duration(provider_id, service_ids, first_day.isoformat(), duration)
        results: List[BestDay] = []
        for offset in range(days):
            day = (first_day + timedelta(days=offset)).isoformat()
            schedule = self.day_schedule(provider_id, day, summary.total)
            available = schedule.available_slots
            if not available:
                continue
            results.append(
                BestDay(
                    date=day,
                    day_of_week=schedule.day_of_week,
                    available_slot_count=len(available),
                    first_available=available[0].start_time,
                )
            )
        results.sort(key=lambda item: (-item.available_slot_count, item.date))
        return BestDaysResponse(provider_id=provider_id, service_duration=summary.total, days=results)


availability_engine = AvailabilityEngine(store=schedule_store)

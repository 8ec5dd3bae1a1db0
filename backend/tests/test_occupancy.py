import os
import random
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.models import Appointment, BlockedRange, ProviderBreak
from app.services.occupancy import (
    Interval,
    applicable_breaks,
    build_busy_intervals,
    fits,
    free_intervals,
    mark_availability,
    overlaps,
)
from app.services.slot_generator import AvailabilityWindow, generate_slots


def _appointment(start, end, status="confirmed"):
    return Appointment(
        id=f"a_{start}",
        provider_id="p1",
        client_id="c1",
        service_id="s1",
        service_ids=["s1"],
        date="2030-01-07",
        start_time=start,
        end_time=end,
        status=status,
    )


def test_appointment_blocks_only_overlapping_slot():
    slots = generate_slots([AvailabilityWindow(start=480, end=720, interval=30)], 30)
    busy = build_busy_intervals([_appointment("09:00", "09:30")])
    marked = mark_availability(slots, busy)
    unavailable = [slot.start_time for slot in marked if not slot.is_available]
    assert unavailable == ["09:00"]
    assert sum(1 for slot in marked if slot.is_available) == 7


def test_canceled_and_no_show_do_not_occupy():
    busy = build_busy_intervals(
        [_appointment("09:00", "10:00", "canceled"), _appointment("10:00", "11:00", "no_show")]
    )
    assert busy == []


def test_all_sources_are_merged_and_sorted():
    blocked = BlockedRange(id="b1", provider_id="p1", date="2030-01-07", start_time="11:00", end_time="11:30")
    lunch = ProviderBreak(id="k1", provider_id="p1", day_of_week=1, start_time="12:00", end_time="13:00")
    busy = build_busy_intervals([_appointment("09:00", "09:30")], [blocked], [lunch])
    assert busy == [Interval(540, 570), Interval(660, 690), Interval(720, 780)]


def test_zero_length_busy_entries_are_dropped():
    blocked = BlockedRange(id="b1", provider_id="p1", date="2030-01-07", start_time="11:00", end_time="11:00")
    assert build_busy_intervals([], [blocked]) == []


def test_breaks_apply_by_weekday_or_exact_date():
    weekly = ProviderBreak(id="w", provider_id="p1", day_of_week=1, start_time="12:00", end_time="13:00")
    dated = ProviderBreak(id="d", provider_id="p1", date="2030-01-08", start_time="15:00", end_time="15:30")
    assert applicable_breaks([weekly, dated], "2030-01-07", 1) == [weekly]
    assert applicable_breaks([weekly, dated], "2030-01-08", 2) == [dated]


def test_free_intervals_subtract_busy_time():
    busy = [Interval(540, 570), Interval(600, 660)]
    assert free_intervals(480, 720, busy) == [Interval(480, 540), Interval(570, 600), Interval(660, 720)]


def test_free_intervals_handle_edges_and_overlaps():
    assert free_intervals(480, 720, [Interval(400, 500)]) == [Interval(500, 720)]
    assert free_intervals(480, 720, [Interval(700, 800)]) == [Interval(480, 700)]
    assert free_intervals(480, 720, [Interval(480, 720)]) == []
    assert free_intervals(480, 720, [Interval(500, 600), Interval(550, 650)]) == [Interval(480, 500), Interval(650, 720)]
    assert free_intervals(480, 720, [Interval(800, 900)]) == [Interval(480, 720)]


def test_free_and_busy_partition_the_window():
    rng = random.Random(7)
    for _ in range(200):
        start, end = 480, 1080
        busy = []
        for _ in range(rng.randint(0, 6)):
            s = rng.randint(400, 1100)
            busy.append(Interval(s, s + rng.randint(1, 120)))
        free = free_intervals(start, end, busy)
        for interval in free:
            assert interval.length > 0
            assert start <= interval.start < interval.end <= end
            assert all(not overlaps(interval.start, interval.end, b.start, b.end) for b in busy)
        for minute in range(start, end):
            in_free = any(f.start <= minute < f.end for f in free)
            in_busy = any(b.start <= minute < b.end for b in busy)
            assert in_free != in_busy


def test_overlap_is_half_open():
    assert overlaps(540, 570, 560, 600)
    assert not overlaps(540, 570, 570, 600)
    assert not overlaps(570, 600, 540, 570)


def test_fits_compares_length():
    assert fits(Interval(480, 570), 90)
    assert not fits(Interval(480, 569), 90)


def test_no_available_slot_overlaps_busy_interval():
    rng = random.Random(11)
    slots = generate_slots([AvailabilityWindow(start=480, end=1080, interval=15)], 45)
    for _ in range(50):
        busy = sorted(Interval(s, s + rng.randint(5, 90)) for s in rng.sample(range(480, 1080), 4))
        for slot in mark_availability(slots, busy):
            if slot.is_available:
                s = int(slot.start_time[:2]) * 60 + int(slot.start_time[3:])
                e = int(slot.end_time[:2]) * 60 + int(slot.end_time[3:])
                assert all(not overlaps(s, e, b.start, b.end) for b in busy)

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.models import AvailabilityRuleInput, SlotCheckRequest, SlotWindow
from app.services.availability import AvailabilityEngine, time_of_day_of
from app.services.errors import SchedulingNotFoundError, SchedulingPermissionError, SchedulingValidationError

MONDAY = "2030-01-07"
TUESDAY = "2030-01-08"


def _morning_only(store, provider_id="prov_1", owner="user_p1", **extra):
    rules = [AvailabilityRuleInput(day_of_week=1, start_time="08:00", end_time="12:00", **extra)]
    return store.replace_rules(provider_id, rules, actor_user_id=owner)


def test_time_slots_for_plain_morning(store):
    _morning_only(store)
    result = AvailabilityEngine(store).time_slots("prov_1", MONDAY, duration=30, slot_interval=30)
    assert result.day_of_week == 1
    assert result.timezone == "America/Sao_Paulo"
    assert result.total_count == 8
    assert result.available_count == 8
    assert result.slots[0].start_time == "08:00"
    assert result.slots[-1].end_time == "12:00"


def test_computation_is_idempotent(store):
    _morning_only(store)
    engine = AvailabilityEngine(store)
    first = engine.time_slots("prov_1", MONDAY, service_ids=["svc_haircut"])
    second = engine.time_slots("prov_1", MONDAY, service_ids=["svc_haircut"])
    assert first == second


def test_manual_block_marks_overlapping_slots(store):
    _morning_only(store)
    store.create_blocked_range("prov_1", MONDAY, "09:00", "09:30", actor_user_id="user_p1")
    result = AvailabilityEngine(store).time_slots("prov_1", MONDAY, duration=30)
    assert [slot.start_time for slot in result.slots if not slot.is_available] == ["09:00"]
    assert result.available_count == 7


def test_breaks_occupy_time(store):
    store.create_break("prov_1", actor_user_id="user_p1", start_time="10:00", end_time="10:30", day_of_week=2)
    result = AvailabilityEngine(store).time_slots("prov_1", TUESDAY, duration=30)
    assert [slot.start_time for slot in result.slots if not slot.is_available] == ["10:00"]
    monday = AvailabilityEngine(store).time_slots("prov_1", MONDAY, duration=30)
    assert monday.available_count == monday.total_count


def test_rule_interval_is_used_unless_overridden(store):
    _morning_only(store, interval_minutes=60)
    engine = AvailabilityEngine(store)
    assert engine.time_slots("prov_1", MONDAY, duration=30).total_count == 4
    assert engine.time_slots("prov_1", MONDAY, duration=30, slot_interval=15).total_count == 15


def test_specific_date_override_and_closed_day(store):
    store.replace_rules(
        "prov_1",
        [
            AvailabilityRuleInput(day_of_week=1, start_time="08:00", end_time="12:00"),
            AvailabilityRuleInput(specific_date=MONDAY, start_time="14:00", end_time="15:00"),
            AvailabilityRuleInput(specific_date="2030-01-14", start_time="08:00", end_time="12:00", is_available=False),
        ],
        actor_user_id="user_p1",
    )
    engine = AvailabilityEngine(store)
    override = engine.time_slots("prov_1", MONDAY, duration=30)
    assert [slot.start_time for slot in override.slots] == ["14:00", "14:30"]
    assert engine.time_slots("prov_1", "2030-01-14", duration=30).slots == []
    assert engine.time_slots("prov_1", "2030-01-21", duration=30).total_count == 8


def test_time_of_day_filter(store):
    engine = AvailabilityEngine(store)
    afternoon = engine.time_slots("prov_1", MONDAY, duration=60, time_of_day="afternoon")
    assert afternoon.slots
    assert all(time_of_day_of(slot.start_time) == "afternoon" for slot in afternoon.slots)
    assert time_of_day_of("05:30") == "evening"
    assert time_of_day_of("18:00") == "evening"


def test_free_intervals_report_gaps(store):
    _morning_only(store)
    store.create_blocked_range("prov_1", MONDAY, "09:00", "10:00", actor_user_id="user_p1")
    result = AvailabilityEngine(store).free_intervals("prov_1", MONDAY)
    assert [(item.start_time, item.end_time, item.duration) for item in result.intervals] == [
        ("08:00", "09:00", 60),
        ("10:00", "12:00", 120),
    ]


def test_check_slots_returns_only_still_available(store):
    _morning_only(store)
    store.create_blocked_range("prov_1", MONDAY, "09:00", "09:30", actor_user_id="user_p1")
    request = SlotCheckRequest(
        date=MONDAY,
        service_ids=["svc_haircut"],
        slots=[
            SlotWindow(start_time="08:00", end_time="08:30"),
            SlotWindow(start_time="09:00"),
            SlotWindow(start_time="10:00", end_time="11:00"),
            SlotWindow(start_time="13:00"),
        ],
    )
    result = AvailabilityEngine(store).check_slots("prov_1", request)
    assert [slot.start_time for slot in result.available_slots] == ["08:00"]
    assert result.requested_count == 4
    assert result.available_count == 1
    assert result.unavailable_count == 3


def test_check_slots_honors_listing_interval(store):
    _morning_only(store)
    request = SlotCheckRequest(date=MONDAY, service_ids=["svc_haircut"], slots=[SlotWindow(start_time="08:15")])
    engine = AvailabilityEngine(store)
    assert engine.check_slots("prov_1", request).available_count == 0
    fine_grained = request.model_copy(update={"slot_interval": 15})
    assert [slot.start_time for slot in engine.check_slots("prov_1", fine_grained).available_slots] == ["08:15"]


def test_listing_a_service_the_provider_does_not_offer(store):
    with pytest.raises(SchedulingNotFoundError):
        AvailabilityEngine(store).time_slots("prov_1", MONDAY, service_ids=["svc_massage"])


def test_best_days_rank_by_free_slot_count(store):
    store.replace_rules(
        "prov_1",
        [
            AvailabilityRuleInput(day_of_week=1, start_time="08:00", end_time="10:00"),
            AvailabilityRuleInput(day_of_week=2, start_time="08:00", end_time="12:00"),
        ],
        actor_user_id="user_p1",
    )
    result = AvailabilityEngine(store).best_days("prov_1", ["svc_haircut"], days=7, start_date="2030-01-06")
    assert [(day.date, day.available_slot_count) for day in result.days] == [(TUESDAY, 8), (MONDAY, 4)]
    assert result.days[0].first_available == "08:00"
    with pytest.raises(SchedulingValidationError):
        AvailabilityEngine(store).best_days("prov_1", ["svc_haircut"], days=0)


def test_rule_batch_requires_owner_and_valid_rules(store):
    with pytest.raises(SchedulingPermissionError):
        _morning_only(store, owner="user_p2")
    with pytest.raises(SchedulingValidationError):
        store.replace_rules(
            "prov_1",
            [AvailabilityRuleInput(day_of_week=1, start_time="12:00", end_time="08:00")],
            actor_user_id="user_p1",
        )
    # The failed batch left the seeded rules untouched.
    assert len(store.list_rules("prov_1")) == 11


def test_unknown_provider(store):
    with pytest.raises(SchedulingNotFoundError):
        AvailabilityEngine(store).time_slots("prov_missing", MONDAY, duration=30)

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.models import AvailabilityRuleInput
from app.services.availability import AvailabilityEngine
from app.services.durations import DurationAggregator, format_duration
from app.services.errors import DurationExceedsDailyLimit, SchedulingNotFoundError, SchedulingValidationError


def test_format_duration():
    assert format_duration(45) == "45min"
    assert format_duration(60) == "1h"
    assert format_duration(90) == "1h 30min"


def test_provider_override_wins_over_template(store):
    aggregator = DurationAggregator(store)
    # prov_2 overrides the 30 minute haircut template to 45 minutes.
    summary = aggregator.aggregate("prov_2", ["svc_haircut", "svc_beard"])
    assert summary.total == 75
    assert [(item.service_id, item.duration) for item in summary.services] == [("svc_haircut", 45), ("svc_beard", 30)]


def test_template_default_without_provider(store):
    summary = DurationAggregator(store).aggregate(None, ["svc_haircut", "svc_coloring"])
    assert summary.total == 90
    assert summary.formatted_total == "1h 30min"


def test_duplicate_and_blank_ids_are_collapsed(store):
    summary = DurationAggregator(store).aggregate("prov_1", ["svc_haircut", " svc_haircut ", ""])
    assert summary.total == 30


def test_empty_or_unknown_services_are_rejected(store):
    aggregator = DurationAggregator(store)
    with pytest.raises(SchedulingValidationError):
        aggregator.aggregate("prov_1", [])
    with pytest.raises(SchedulingNotFoundError):
        aggregator.aggregate("prov_1", ["svc_missing"])


def test_daily_limit_applies_only_with_a_date(store):
    aggregator = DurationAggregator(store, max_daily_minutes=60)
    summary = aggregator.aggregate("prov_1", ["svc_haircut", "svc_coloring"])
    assert summary.total == 90
    with pytest.raises(DurationExceedsDailyLimit) as exc_info:
        aggregator.aggregate("prov_1", ["svc_haircut", "svc_coloring"], day="2030-01-07")
    error = exc_info.value
    assert error.total_duration == 90
    assert error.max_duration == 60
    detail = error.to_detail()
    assert detail["total_duration"] == 90
    assert detail["max_duration_per_day"] == 60
    assert [item["service_id"] for item in detail["services"]] == ["svc_haircut", "svc_coloring"]
    assert detail["services"][1]["formatted_duration"] == "1h"


def test_combined_services_fit_one_contiguous_block(store):
    store.replace_rules(
        "prov_1",
        [AvailabilityRuleInput(day_of_week=1, start_time="08:00", end_time="09:30")],
        actor_user_id="user_p1",
    )
    engine = AvailabilityEngine(store)
    result = engine.time_slots("prov_1", "2030-01-07", service_ids=["svc_haircut", "svc_coloring"])
    assert result.service_duration == 90
    assert [(slot.start_time, slot.end_time) for slot in result.slots] == [("08:00", "09:30")]
    assert result.slots[0].is_available


def test_services_must_be_offered_by_the_provider(store):
    aggregator = DurationAggregator(store)
    with pytest.raises(SchedulingNotFoundError) as exc_info:
        aggregator.aggregate("prov_1", ["svc_haircut", "svc_massage"])
    detail = exc_info.value.to_detail()
    assert detail["field"] == "service_id"
    assert detail["value"] == "svc_massage"
    assert detail["provider_id"] == "prov_1"
    # Without a provider the template catalog alone decides.
    assert aggregator.aggregate(None, ["svc_massage"]).total == 60


def test_inactive_offering_is_not_offered(store):
    with store._connect() as conn:
        conn.execute("UPDATE provider_services SET is_active = 0 WHERE provider_id = 'prov_2' AND service_id = 'svc_beard'")
        conn.commit()
    with pytest.raises(SchedulingNotFoundError):
        DurationAggregator(store).aggregate("prov_2", ["svc_beard"])
    assert DurationAggregator(store).aggregate("prov_2", ["svc_haircut"]).total == 45

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.services.durations import DurationAggregator
from app.services.errors import DurationExceedsDailyLimit, SchedulingNotFoundError, SchedulingValidationError
from app.services.qualification import ProviderQualificationFilter


def _ids(qualified):
    return [item.provider.id for item in qualified]


def test_providers_must_offer_every_requested_service(store):
    qualifier = ProviderQualificationFilter(store)
    assert _ids(qualifier.qualify(["svc_manicure"])) == ["prov_1", "prov_3", "prov_4"]
    assert _ids(qualifier.qualify(["svc_manicure", "svc_pedicure"])) == ["prov_3", "prov_4"]


def test_min_rating_uses_five_point_scale(store):
    qualifier = ProviderQualificationFilter(store)
    assert _ids(qualifier.qualify(["svc_manicure"], min_rating=4.0)) == ["prov_1", "prov_3"]
    assert _ids(qualifier.qualify(["svc_manicure"], min_rating=4.6)) == ["prov_1"]
    with pytest.raises(SchedulingValidationError):
        qualifier.qualify(["svc_manicure"], min_rating=7)


def test_niche_expands_to_its_categories(store):
    qualifier = ProviderQualificationFilter(store)
    wellness = qualifier.qualify(["svc_manicure"], niche_id="niche_wellness")
    assert _ids(wellness) == ["prov_3"]
    nails = qualifier.qualify(["svc_manicure"], category_id="cat_hair")
    assert _ids(nails) == ["prov_1"]


def test_survivors_carry_their_own_durations(store):
    qualified = ProviderQualificationFilter(store).qualify(["svc_haircut"])
    durations = {item.provider.id: item.total_service_duration for item in qualified}
    assert durations == {"prov_1": 30, "prov_2": 45}
    assert qualified[0].services[0].name == "Haircut"


def test_unknown_service_is_not_found(store):
    with pytest.raises(SchedulingNotFoundError):
        ProviderQualificationFilter(store).qualify(["svc_missing"])


def test_daily_guard_runs_when_a_date_is_given(store):
    qualifier = ProviderQualificationFilter(store, DurationAggregator(store, max_daily_minutes=80))
    assert _ids(qualifier.qualify(["svc_haircut", "svc_beard"])) == ["prov_2"]
    # Templates total 60 minutes but prov_2's own haircut pushes it to 75.
    assert _ids(qualifier.qualify(["svc_haircut", "svc_beard"], day="2030-01-07")) == ["prov_2"]
    strict = ProviderQualificationFilter(store, DurationAggregator(store, max_daily_minutes=70))
    assert _ids(strict.qualify(["svc_haircut", "svc_beard"], day="2030-01-07")) == []
    with pytest.raises(DurationExceedsDailyLimit):
        strict.qualify(["svc_coloring", "svc_haircut"], day="2030-01-07")


def test_inactive_providers_never_qualify(store):
    with store._connect() as conn:
        conn.execute("UPDATE providers SET status = 'inactive' WHERE id = 'prov_4'")
        conn.commit()
    assert _ids(ProviderQualificationFilter(store).qualify(["svc_pedicure"])) == ["prov_3"]


def test_search_without_services_lists_by_category(store):
    qualified = ProviderQualificationFilter(store).qualify([], category_id="cat_nails", allow_empty=True)
    assert _ids(qualified) == ["prov_1", "prov_3", "prov_4"]
    assert all(item.total_service_duration == 0 for item in qualified)

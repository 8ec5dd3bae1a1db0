import os
import sys
import time

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.services.availability import AvailabilityEngine
from app.services.errors import SchedulingValidationError
from app.services.qualification import ProviderQualificationFilter
from app.services.ranking import RankingEngine, haversine_km, paginate, score_provider

STUDIO_BELLA = (-23.5614, -46.6559)
MONDAY = "2030-01-07"


class SlowAvailability:
    """Delegates to a real engine but stalls or fails for chosen providers."""

    def __init__(self, engine, slow=(), broken=(), delay=0.5):
        self.engine = engine
        self.slow = set(slow)
        self.broken = set(broken)
        self.delay = delay

    def day_schedule(self, provider_id, *args, **kwargs):
        if provider_id in self.slow:
            time.sleep(self.delay)
        if provider_id in self.broken:
            raise RuntimeError("availability backend exploded")
        return self.engine.day_schedule(provider_id, *args, **kwargs)


def test_haversine_known_distance():
    # Sao Paulo to Rio de Janeiro is roughly 360 km.
    assert 350 < haversine_km(-23.5505, -46.6333, -22.9068, -43.1729) < 370
    assert haversine_km(10.0, 10.0, 10.0, 10.0) == 0


def test_score_formula_weights():
    scores = score_provider(distance_km=10, max_distance_km=50, rating=4.5, free_slot_count=3)
    assert scores.distance_score == 80
    assert scores.rating_score == 90
    assert scores.availability_score == 60
    assert scores.recommendation_score == pytest.approx(79.0)


def test_score_components_are_clamped():
    far = score_provider(distance_km=80, max_distance_km=50, rating=None, free_slot_count=12)
    assert far.distance_score == 0
    assert far.rating_score == 0
    assert far.availability_score == 100


def test_rank_orders_by_score_and_drops_far_providers(store):
    candidates = ProviderQualificationFilter(store).qualify(["svc_manicure"], day=MONDAY)
    ranker = RankingEngine(AvailabilityEngine(store), max_workers=2, provider_timeout=5)
    ranked = ranker.rank(candidates, day=MONDAY, origin=STUDIO_BELLA, max_distance_km=50)
    assert [item.provider.id for item in ranked] == ["prov_1", "prov_3"]
    top = ranked[0]
    assert top.distance_km == 0
    assert top.free_slot_count > 5
    assert top.availability_score == 100
    assert top.next_available_slot == "09:00"
    assert ranked[0].recommendation_score >= ranked[1].recommendation_score


def test_missing_coordinates_use_neutral_distance(store):
    candidates = ProviderQualificationFilter(store).qualify(["svc_pedicure"])
    ranked = RankingEngine(AvailabilityEngine(store)).rank(candidates, max_distance_km=50)
    assert {item.provider.id for item in ranked} == {"prov_3", "prov_4"}
    for item in ranked:
        assert item.distance_km is None
        assert item.distance_score == 50
        assert item.availability_score == 0


def test_providers_without_room_are_excluded(store):
    store.create_blocked_range("prov_3", MONDAY, "09:00", "18:00", actor_user_id="user_p3", reason="Closed")
    candidates = ProviderQualificationFilter(store).qualify(["svc_manicure"], day=MONDAY)
    ranked = RankingEngine(AvailabilityEngine(store)).rank(candidates, day=MONDAY, origin=STUDIO_BELLA)
    assert [item.provider.id for item in ranked] == ["prov_1"]


def test_limit_truncates_and_must_be_positive(store):
    candidates = ProviderQualificationFilter(store).qualify(["svc_manicure"])
    ranker = RankingEngine(AvailabilityEngine(store))
    assert len(ranker.rank(candidates, limit=1)) == 1
    with pytest.raises(SchedulingValidationError):
        ranker.rank(candidates, limit=0)


def test_slow_or_failing_providers_are_skipped(store):
    candidates = ProviderQualificationFilter(store).qualify(["svc_manicure"], day=MONDAY)
    availability = SlowAvailability(AvailabilityEngine(store), slow={"prov_3"}, broken={"prov_4"})
    ranker = RankingEngine(availability, max_workers=3, provider_timeout=0.1)
    ranked = ranker.rank(candidates, day=MONDAY, origin=None)
    assert [item.provider.id for item in ranked] == ["prov_1"]


def test_paginate_reports_totals():
    items, meta = paginate(list(range(23)), page=3, limit=10)
    assert items == [20, 21, 22]
    assert meta == {"total": 23, "total_pages": 3}
    items, meta = paginate([], page=1, limit=10)
    assert items == []
    assert meta == {"total": 0, "total_pages": 0}

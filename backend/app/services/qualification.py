from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from app.models import Provider, ProviderServiceOffering, ServiceDurationItem, ServiceTemplate
from app.services.durations import DurationAggregator, check_daily_limit, combine_durations, normalize_service_ids
from app.services.errors import SchedulingNotFoundError, SchedulingValidationError
from app.services.schedule_store import schedule_store


@dataclass
class QualifiedProvider:
    provider: Provider
    offerings: List[ProviderServiceOffering]
    total_service_duration: int
    services: List[ServiceDurationItem] = field(default_factory=list)


def offers_all(offerings: Iterable[ProviderServiceOffering], service_ids: Sequence[str]) -> bool:
    offered = {item.service_id for item in offerings if item.is_active}
    return all(service_id in offered for service_id in service_ids)


def meets_rating(provider: Provider, min_rating: float) -> bool:
    if min_rating <= 0:
        return True
    return provider.rating is not None and provider.rating >= min_rating


def in_categories(offerings: Iterable[ProviderServiceOffering], category_ids: Optional[Set[str]]) -> bool:
    if category_ids is None:
        return True
    return any(item.category_id in category_ids for item in offerings if item.is_active)


class ProviderQualificationFilter:
    def __init__(self, store, durations: Optional[DurationAggregator] = None) -> None:
        self.store = store
        self.durations = durations or DurationAggregator(store)

    def _category_filter(self, category_id: Optional[str], niche_id: Optional[str]) -> Optional[Set[str]]:
        if category_id:
            return {category_id}
        if niche_id:
            return self.store.category_ids_for_niche(niche_id)
        return None

    def qualify(
        self,
        service_ids: Sequence[str],
        *,
        min_rating: float = 0.0,
        category_id: Optional[str] = None,
        niche_id: Optional[str] = None,
        q: Optional[str] = None,
        day: Optional[str] = None,
        allow_empty: bool = False,
    ) -> List[QualifiedProvider]:
        """Providers offering every requested service and passing the filters.

        With a ``day`` the daily duration guard runs on the template totals
        first and fails the whole request; providers whose own overrides push
        them past the limit are dropped.
        """
        if min_rating < 0 or min_rating > 5:
            raise SchedulingValidationError("min_rating must be between 0 and 5", field="min_rating", value=min_rating)
        if allow_empty and not any((item or "").strip() for item in service_ids):
            ids: List[str] = []
        else:
            ids = normalize_service_ids(service_ids)
        templates: Dict[str, ServiceTemplate] = self.durations.templates_for(ids)
        missing = [service_id for service_id in ids if service_id not in templates]
        if missing:
            raise SchedulingNotFoundError("Service not found", field="service_id", value=missing[0])
        if day and ids:
            check_daily_limit(combine_durations(ids, templates), self.durations.max_daily_minutes)

        category_ids = self._category_filter(category_id, niche_id)
        providers = self.store.list_providers(q=q)
        offerings_by_provider = self.store.list_provider_offerings([provider.id for provider in providers])

        qualified: List[QualifiedProvider] = []
        for provider in providers:
            offerings = offerings_by_provider.get(provider.id, [])
            if not offers_all(offerings, ids):
                continue
            if not meets_rating(provider, min_rating):
                continue
            if not in_categories(offerings, category_ids):
                continue
            overrides = {item.service_id: item.duration for item in offerings if item.service_id in ids}
            summary = combine_durations(ids, templates, overrides)
            if day and summary.total > self.durations.max_daily_minutes:
                continue
            qualified.append(
                QualifiedProvider(
                    provider=provider,
                    offerings=offerings,
                    total_service_duration=summary.total,
                    services=summary.services,
                )
            )
        return qualified


qualification_filter = ProviderQualificationFilter(store=schedule_store)

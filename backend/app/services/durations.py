from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from app import settings
from app.models import ServiceDurationItem, ServiceTemplate
from app.services.errors import DurationExceedsDailyLimit, SchedulingNotFoundError, SchedulingValidationError

DEFAULT_TEMPLATE_DURATION = 60


def format_duration(minutes: int) -> str:
    hours, rest = divmod(int(minutes), 60)
    if hours and rest:
        return f"{hours}h {rest}min"
    if hours:
        return f"{hours}h"
    return f"{rest}min"


@dataclass
class DurationSummary:
    total: int
    services: List[ServiceDurationItem] = field(default_factory=list)

    @property
    def formatted_total(self) -> str:
        return format_duration(self.total)


def normalize_service_ids(service_ids: Sequence[str]) -> List[str]:
    ids: List[str] = []
    for raw in service_ids:
        value = (raw or "").strip()
        if value and value not in ids:
            ids.append(value)
    if not ids:
        raise SchedulingValidationError("At least one service is required", field="service_ids", value=list(service_ids))
    return ids


def combine_durations(
    service_ids: Sequence[str],
    templates: Mapping[str, ServiceTemplate],
    overrides: Optional[Mapping[str, int]] = None,
) -> DurationSummary:
    """Sum per-service durations, provider override first, then template default."""
    overrides = overrides or {}
    items: List[ServiceDurationItem] = []
    for service_id in service_ids:
        template = templates.get(service_id)
        if template is None:
            raise SchedulingNotFoundError("Service not found", field="service_id", value=service_id)
        duration = overrides.get(service_id) or template.duration or DEFAULT_TEMPLATE_DURATION
        items.append(
            ServiceDurationItem(
                service_id=service_id,
                name=template.name,
                duration=duration,
                formatted_duration=format_duration(duration),
            )
        )
    return DurationSummary(total=sum(item.duration for item in items), services=items)


def check_daily_limit(summary: DurationSummary, max_minutes: int) -> None:
    if summary.total > max_minutes:
        raise DurationExceedsDailyLimit(
            total_duration=summary.total,
            max_duration=max_minutes,
            services=[item.model_dump() for item in summary.services],
        )


class DurationAggregator:
    def __init__(self, store, max_daily_minutes: Optional[int] = None) -> None:
        self.store = store
        self.max_daily_minutes = max_daily_minutes or settings.MAX_DAILY_MINUTES

    def templates_for(self, service_ids: Sequence[str]) -> Dict[str, ServiceTemplate]:
        return self.store.get_service_templates(service_ids)

    def aggregate(
        self,
        provider_id: Optional[str],
        service_ids: Sequence[str],
        day: Optional[str] = None,
    ) -> DurationSummary:
        ids = normalize_service_ids(service_ids)
        templates = self.templates_for(ids)
        overrides: Dict[str, int] = {}
        if provider_id:
            offered = self.store.get_provider_service_durations(provider_id, ids)
            for service_id in ids:
                if service_id in templates and service_id not in offered:
                    raise SchedulingNotFoundError(
                        "Service not offered by this provider",
                        field="service_id",
                        value=service_id,
                        details={"provider_id": provider_id},
                    )
            overrides = {service_id: duration for service_id, duration in offered.items() if duration}
        summary = combine_durations(ids, templates, overrides)
        if day:
            check_daily_limit(summary, self.max_daily_minutes)
        return summary

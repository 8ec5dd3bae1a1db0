from typing import Optional

from fastapi import APIRouter, Query

from app.models import (
    BestDaysResponse,
    FreeIntervalsResponse,
    ProviderDetails,
    ProviderRecommendationResponse,
    ProviderSearchResponse,
    SlotCheckRequest,
    SlotCheckResponse,
    SmartSlotsResponse,
    TimeOfDay,
    TimeSlotsResponse,
)
from app.routers.http_errors import parse_service_ids, raise_scheduling_http_error
from app.services.availability import availability_engine
from app.services.errors import SchedulingError, SchedulingValidationError
from app.services.qualification import qualification_filter
from app.services.ranking import paginate, ranking_engine
from app.services.schedule_store import schedule_store
from app.services.slot_advisor import slot_advisor
from app.services.time_codec import parse_date

router = APIRouter(prefix="/providers", tags=["providers"])

MAX_PAGE_SIZE = 50


def _origin(lat: Optional[float], lng: Optional[float]) -> Optional[tuple[float, float]]:
    if lat is None or lng is None:
        return None
    return lat, lng


@router.get("/search", response_model=ProviderSearchResponse)
def search_providers(
    service_id: Optional[str] = Query(default=None),
    service_ids: Optional[str] = Query(default=None),
    date: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None),
    category_id: Optional[str] = Query(default=None),
    niche_id: Optional[str] = Query(default=None),
    min_rating: float = Query(default=0.0),
    user_lat: Optional[float] = Query(default=None),
    user_lng: Optional[float] = Query(default=None),
    max_distance_km: Optional[float] = Query(default=None),
    time_of_day: Optional[TimeOfDay] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
):
    ids = parse_service_ids(service_id, service_ids)
    limit = min(limit, MAX_PAGE_SIZE)
    try:
        day = parse_date(date).isoformat() if date else None
        if day and not ids:
            raise SchedulingValidationError("A service is required to search by date", field="service_ids")
        candidates = qualification_filter.qualify(
            ids,
            min_rating=min_rating,
            category_id=category_id,
            niche_id=niche_id,
            q=q,
            day=day,
            allow_empty=True,
        )
        ranked = ranking_engine.evaluate_all(
            candidates,
            day=day,
            origin=_origin(user_lat, user_lng),
            max_distance_km=max_distance_km,
            time_of_day=time_of_day,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)
    items, meta = paginate(ranked, page, limit)
    return ProviderSearchResponse(
        items=items,
        total=meta["total"],
        page=page,
        limit=limit,
        total_pages=meta["total_pages"],
        has_next=page < meta["total_pages"],
        has_prev=page > 1,
    )


@router.get("/recommend", response_model=ProviderRecommendationResponse)
def recommend_providers(
    service_id: Optional[str] = Query(default=None),
    service_ids: Optional[str] = Query(default=None),
    date: Optional[str] = Query(default=None),
    category_id: Optional[str] = Query(default=None),
    niche_id: Optional[str] = Query(default=None),
    min_rating: float = Query(default=0.0),
    user_lat: Optional[float] = Query(default=None),
    user_lng: Optional[float] = Query(default=None),
    max_distance_km: Optional[float] = Query(default=None),
    time_of_day: Optional[TimeOfDay] = Query(default=None),
    limit: int = Query(default=5, ge=1, le=MAX_PAGE_SIZE),
):
    ids = parse_service_ids(service_id, service_ids)
    try:
        day = parse_date(date).isoformat() if date else None
        candidates = qualification_filter.qualify(
            ids,
            min_rating=min_rating,
            category_id=category_id,
            niche_id=niche_id,
            day=day,
        )
        items = ranking_engine.rank(
            candidates,
            day=day,
            origin=_origin(user_lat, user_lng),
            max_distance_km=max_distance_km,
            limit=limit,
            time_of_day=time_of_day,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)
    return ProviderRecommendationResponse(date=day, service_ids=ids, items=items)


@router.get("/{provider_id}", response_model=ProviderDetails)
def get_provider(provider_id: str):
    try:
        return schedule_store.get_provider_details(provider_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/{provider_id}/time-slots", response_model=TimeSlotsResponse)
def get_time_slots(
    provider_id: str,
    date: str = Query(...),
    service_id: Optional[str] = Query(default=None),
    service_ids: Optional[str] = Query(default=None),
    duration: Optional[int] = Query(default=None, ge=1),
    interval: Optional[int] = Query(default=None, ge=1),
    time_of_day: Optional[TimeOfDay] = Query(default=None),
):
    ids = parse_service_ids(service_id, service_ids)
    try:
        return availability_engine.time_slots(
            provider_id,
            date,
            service_ids=ids,
            duration=duration,
            slot_interval=interval,
            time_of_day=time_of_day,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/{provider_id}/available-slots-check", response_model=SlotCheckResponse)
def check_available_slots(provider_id: str, payload: SlotCheckRequest):
    try:
        return availability_engine.check_slots(provider_id, payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/{provider_id}/smart-time-slots", response_model=SmartSlotsResponse)
def get_smart_time_slots(
    provider_id: str,
    date: str = Query(...),
    service_id: Optional[str] = Query(default=None),
    service_ids: Optional[str] = Query(default=None),
    duration: Optional[int] = Query(default=None, ge=1),
):
    ids = parse_service_ids(service_id, service_ids)
    try:
        result = availability_engine.time_slots(provider_id, date, service_ids=ids, duration=duration)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)
    source, slots = slot_advisor.score(
        result.slots,
        context={
            "date": result.date,
            "day_of_week": result.day_of_week,
            "timezone": result.timezone,
            "service_duration": result.service_duration,
        },
    )
    return SmartSlotsResponse(provider_id=provider_id, date=result.date, source=source, slots=slots)


@router.get("/{provider_id}/best-days", response_model=BestDaysResponse)
def get_best_days(
    provider_id: str,
    service_id: Optional[str] = Query(default=None),
    service_ids: Optional[str] = Query(default=None),
    duration: Optional[int] = Query(default=None, ge=1),
    days: int = Query(default=14),
    start_date: Optional[str] = Query(default=None),
):
    ids = parse_service_ids(service_id, service_ids)
    try:
        return availability_engine.best_days(
            provider_id,
            service_ids=ids,
            days=days,
            start_date=start_date,
            duration=duration,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/{provider_id}/free-intervals", response_model=FreeIntervalsResponse)
def get_free_intervals(provider_id: str, date: str = Query(...)):
    try:
        return availability_engine.free_intervals(provider_id, date)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)

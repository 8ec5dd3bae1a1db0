from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized
from app.models import (
    AvailabilityBatchRequest,
    AvailabilityRule,
    BlockedRange,
    BlockedRangeCreateRequest,
    ProviderBreak,
    ProviderBreakCreateRequest,
)
from app.routers.http_errors import raise_scheduling_http_error
from app.services.errors import SchedulingError
from app.services.schedule_store import schedule_store

router = APIRouter(tags=["availability"])


@router.get("/availability", response_model=list[AvailabilityRule])
def list_availability(provider_id: str = Query(...)):
    try:
        schedule_store.get_provider(provider_id)
        return schedule_store.list_rules(provider_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/availability/batch", response_model=list[AvailabilityRule])
def replace_availability(
    payload: AvailabilityBatchRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return schedule_store.replace_rules(payload.provider_id, payload.rules, actor_user_id=payload.actor_user_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/blocked-slots", response_model=list[BlockedRange])
def list_blocked_slots(
    provider_id: str = Query(...),
    date: Optional[str] = Query(default=None),
):
    try:
        return schedule_store.list_blocked_ranges(provider_id, day=date)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/blocked-slots", response_model=BlockedRange)
def create_blocked_slot(
    payload: BlockedRangeCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return schedule_store.create_blocked_range(
            payload.provider_id,
            payload.date,
            payload.start_time,
            payload.end_time,
            actor_user_id=payload.actor_user_id,
            reason=payload.reason,
            recurrent_id=payload.recurrent_id,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.delete("/blocked-slots/{blocked_id}", response_model=BlockedRange)
def delete_blocked_slot(
    blocked_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        return schedule_store.delete_blocked_range(blocked_id, actor_user_id=actor_user_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/breaks", response_model=list[ProviderBreak])
def list_breaks(provider_id: str = Query(...)):
    try:
        return schedule_store.list_breaks(provider_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/breaks", response_model=ProviderBreak)
def create_break(
    payload: ProviderBreakCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return schedule_store.create_break(
            payload.provider_id,
            actor_user_id=payload.actor_user_id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            name=payload.name,
            day_of_week=payload.day_of_week,
            day=payload.date,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)

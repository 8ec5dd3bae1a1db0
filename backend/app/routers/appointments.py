from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized
from app.models import (
    Appointment,
    AppointmentCreateRequest,
    AppointmentCreateResult,
    AppointmentStatusChange,
    AppointmentStatusUpdateRequest,
)
from app.routers.http_errors import raise_scheduling_http_error
from app.services.booking import booking_validator
from app.services.errors import SchedulingError, SchedulingValidationError
from app.services.schedule_store import schedule_store

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=AppointmentCreateResult)
def create_appointment(
    payload: AppointmentCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return booking_validator.create_appointment(payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("", response_model=list[Appointment])
def list_appointments(
    provider_id: Optional[str] = Query(default=None),
    client_id: Optional[str] = Query(default=None),
    date: Optional[str] = Query(default=None),
):
    try:
        if not provider_id and not client_id:
            raise SchedulingValidationError("provider_id or client_id is required", field="provider_id")
        return schedule_store.list_appointments(provider_id=provider_id, client_id=client_id, day=date)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/{appointment_id}", response_model=Appointment)
def get_appointment(appointment_id: str):
    try:
        return schedule_store.get_appointment(appointment_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.put("/{appointment_id}/status", response_model=Appointment)
def update_appointment_status(
    appointment_id: str,
    payload: AppointmentStatusUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return booking_validator.update_status(appointment_id, payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/{appointment_id}/history", response_model=list[AppointmentStatusChange])
def get_appointment_history(appointment_id: str):
    try:
        schedule_store.get_appointment(appointment_id)
        return schedule_store.list_status_history(appointment_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)

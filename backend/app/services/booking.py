import logging
import sqlite3
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from app import settings
from app.models import (
    Appointment,
    AppointmentCreateRequest,
    AppointmentCreateResult,
    AppointmentStatusUpdateRequest,
    BlockedRange,
    CandidateSlot,
    Provider,
)
from app.services.availability import compute_day_schedule
from app.services.durations import DurationAggregator
from app.services.email_sender import EmailSender, email_sender
from app.services.errors import (
    EndTimeMismatch,
    InvalidStatusTransition,
    SchedulingPermissionError,
    SlotNoLongerAvailable,
    SlotNotFound,
)
from app.services.notification_store import NotificationStore, notification_store
from app.services.occupancy import first_conflict, overlaps
from app.services.schedule_store import ScheduleStore, schedule_store
from app.services.time_codec import parse_date, to_minutes, to_time_string

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, set[str]] = {
    "pending": {"confirmed", "canceled"},
    "confirmed": {"executing", "canceled", "no_show"},
    "executing": {"completed", "canceled", "no_show"},
    "completed": {"pending"},
    "canceled": {"pending"},
    "no_show": set(),
}
RELEASING_STATUSES = {"canceled", "no_show"}
PROVIDER_ONLY_STATUSES = {"confirmed", "executing", "completed", "no_show", "pending"}

_side_effect_executor = ThreadPoolExecutor(
    max_workers=settings.SIDE_EFFECT_WORKERS,
    thread_name_prefix="booking-side-effects",
)


class BookingValidator:
    """Commit path for appointments.

    Every booking recomputes the provider's day inside one write transaction
    while holding that provider's lock, so two requests for the same start
    time cannot both pass. The partial unique index on active appointments
    backs this up at the storage layer.
    """

    def __init__(
        self,
        store: ScheduleStore,
        durations: Optional[DurationAggregator] = None,
        notifier: Optional[NotificationStore] = None,
        mailer: Optional[EmailSender] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.store = store
        self.durations = durations or DurationAggregator(store)
        self.notifier = notifier or notification_store
        self.mailer = mailer or email_sender
        self.executor = executor or _side_effect_executor
        self._locks_guard = Lock()
        self._provider_locks: Dict[str, Lock] = {}

    def _provider_lock(self, provider_id: str) -> Lock:
        with self._locks_guard:
            lock = self._provider_locks.get(provider_id)
            if lock is None:
                lock = Lock()
                self._provider_locks[provider_id] = lock
            return lock

    def _is_manager(self, provider: Provider, actor_user_id: str) -> bool:
        return self.store.is_admin(actor_user_id) or (
            bool(provider.owner_user_id) and provider.owner_user_id == actor_user_id
        )

    def _reserve(self, conn: sqlite3.Connection, appointment: Appointment) -> None:
        """Block [start, end) for the appointment; failure leaves the booking intact."""
        blocked = BlockedRange(
            id=f"blk_{uuid4().hex[:10]}",
            provider_id=appointment.provider_id,
            date=appointment.date,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            reason=f"Appointment {appointment.id}",
            block_type="system",
            appointment_id=appointment.id,
        )
        conn.execute("SAVEPOINT reserve_range")
        try:
            self.store.insert_blocked_range(conn, blocked)
        except sqlite3.DatabaseError:
            conn.execute("ROLLBACK TO SAVEPOINT reserve_range")
            logger.exception("Could not reserve range for appointment_id=%s", appointment.id)
        finally:
            conn.execute("RELEASE SAVEPOINT reserve_range")

    def create_appointment(self, request: AppointmentCreateRequest) -> AppointmentCreateResult:
        day = parse_date(request.date).isoformat()
        start = to_minutes(request.start_time, field="start_time")
        if request.end_time is not None:
            to_minutes(request.end_time, field="end_time")

        provider = self.store.get_provider(request.provider_id)
        is_manager = self._is_manager(provider, request.actor_user_id)
        if not is_manager and request.actor_user_id != request.client_id:
            raise SchedulingPermissionError("Only the client or the provider can book this appointment")
        if request.status == "confirmed" and not is_manager:
            raise SchedulingPermissionError("Only the provider can create confirmed appointments")

        service_ids = request.requested_service_ids()
        summary = self.durations.aggregate(provider.id, service_ids, day)
        duration = summary.total
        end = start + duration

        with self._provider_lock(provider.id):
            with self.store.transaction() as conn:
                facts = self.store.load_day_facts(provider.id, day, conn=conn)
                schedule = compute_day_schedule(facts, day, duration, request.slot_interval)
                slot = next((item for item in schedule.slots if to_minutes(item.start_time) == start), None)
                if slot is None:
                    raise SlotNotFound(request.start_time)
                if not slot.is_available:
                    raise SlotNoLongerAvailable(request.start_time)
                end_time = to_time_string(end)
                if request.end_time is not None and to_minutes(request.end_time) != end:
                    raise EndTimeMismatch(request.end_time, slot.start_time, end_time, duration)

                consumed: List[CandidateSlot] = [
                    item
                    for item in schedule.slots
                    if item.is_available
                    and overlaps(start, end, to_minutes(item.start_time), to_minutes(item.end_time))
                ]
                appointment = Appointment(
                    id=f"apt_{uuid4().hex[:10]}",
                    provider_id=provider.id,
                    client_id=request.client_id,
                    service_id=summary.services[0].service_id,
                    service_ids=[item.service_id for item in summary.services],
                    date=day,
                    start_time=slot.start_time,
                    end_time=end_time,
                    status=request.status or ("confirmed" if is_manager else "pending"),
                    payment_status=request.payment_status,
                    notes=request.notes.strip(),
                    is_manually_created=is_manager and request.actor_user_id != request.client_id,
                    created_at=datetime.now(timezone.utc).isoformat(),
                )
                try:
                    self.store.insert_appointment(conn, appointment, request.actor_user_id)
                except sqlite3.IntegrityError as exc:
                    raise SlotNoLongerAvailable(request.start_time) from exc
                self._reserve(conn, appointment)

        logger.info(
            "Appointment created id=%s provider_id=%s date=%s %s-%s",
            appointment.id,
            appointment.provider_id,
            appointment.date,
            appointment.start_time,
            appointment.end_time,
        )
        self._after_create(provider, appointment)
        return AppointmentCreateResult(
            appointment=appointment,
            total_duration=duration,
            services=summary.services,
            consumed_slots=consumed,
        )

    def update_status(self, appointment_id: str, update: AppointmentStatusUpdateRequest) -> Appointment:
        current = self.store.get_appointment(appointment_id)
        provider = self.store.get_provider(current.provider_id)
        next_status = update.status
        if next_status not in ALLOWED_TRANSITIONS.get(current.status, set()):
            raise InvalidStatusTransition(current.status, next_status)

        is_manager = self._is_manager(provider, update.actor_user_id)
        if next_status in PROVIDER_ONLY_STATUSES and not is_manager:
            raise SchedulingPermissionError("Only the provider can apply this status")
        if next_status == "canceled" and not is_manager and update.actor_user_id != current.client_id:
            raise SchedulingPermissionError("Only the client or the provider can cancel")

        with self._provider_lock(provider.id):
            with self.store.transaction() as conn:
                row = self.store.get_appointment(appointment_id, conn=conn)
                if row.status != current.status:
                    raise InvalidStatusTransition(row.status, next_status)
                if next_status == "pending" and row.status in RELEASING_STATUSES:
                    facts = self.store.load_day_facts(row.provider_id, row.date, conn=conn)
                    schedule = compute_day_schedule(facts, row.date, 1)
                    if first_conflict(to_minutes(row.start_time), to_minutes(row.end_time), schedule.busy):
                        raise SlotNoLongerAvailable(row.start_time)
                try:
                    self.store.set_appointment_status(
                        conn, appointment_id, row.status, next_status, update.actor_user_id, update.note
                    )
                except sqlite3.IntegrityError as exc:
                    raise SlotNoLongerAvailable(row.start_time) from exc
                if next_status in RELEASING_STATUSES:
                    released = self.store.release_appointment_blocks(conn, appointment_id)
                    logger.info("Released %s reserved ranges for appointment_id=%s", released, appointment_id)
                elif row.status in RELEASING_STATUSES:
                    self._reserve(conn, row.model_copy(update={"status": next_status}))

        updated = current.model_copy(update={"status": next_status})
        self._after_status_change(updated, update.actor_user_id)
        return updated

    def _dispatch(self, name: str, fn: Callable[..., Any], *args: Any) -> Future:
        def run() -> None:
            try:
                fn(*args)
            except Exception:
                logger.exception("Booking side effect %s failed", name)

        return self.executor.submit(run)

    def _after_create(self, provider: Provider, appointment: Appointment) -> None:
        if provider.owner_user_id:
            self._dispatch(
                "provider_notification",
                self.notifier.publish,
                provider.owner_user_id,
                {
                    "title": "New appointment",
                    "body": f"{appointment.date} {appointment.start_time}-{appointment.end_time}",
                    "category": "appointment",
                    "deep_link": f"appointment:{appointment.id}",
                    "payload": {"appointment_id": appointment.id, "status": appointment.status},
                },
            )
        self._dispatch("client_email", self._email_client, provider, appointment)

    def _email_client(self, provider: Provider, appointment: Appointment) -> None:
        to_email = self.store.get_client_email(appointment.client_id)
        if not to_email:
            return
        self.mailer.send(
            to_email=to_email,
            subject=f"Your appointment with {provider.name}",
            plain_text=(
                f"Your appointment with {provider.name} is {appointment.status} for "
                f"{appointment.date} at {appointment.start_time} (until {appointment.end_time})."
            ),
        )

    def _after_status_change(self, appointment: Appointment, actor_user_id: str) -> None:
        if actor_user_id == appointment.client_id:
            return
        self._dispatch(
            "client_status_notification",
            self.notifier.publish,
            appointment.client_id,
            {
                "title": f"Appointment {appointment.status.replace('_', ' ')}",
                "body": f"{appointment.date} {appointment.start_time}-{appointment.end_time}",
                "category": "appointment",
                "deep_link": f"appointment:{appointment.id}",
                "payload": {"appointment_id": appointment.id, "status": appointment.status},
            },
        )


booking_validator = BookingValidator(store=schedule_store)

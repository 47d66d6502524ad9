"""Transactional booking façade.

Every public method runs in exactly one database transaction and returns an
:class:`Outcome`. Components below the engine raise ``BookingError``; the
transaction wrapper rolls back and turns it into a returned ``Failure``, so a
rejected call never leaves partial slot or appointment changes behind.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, TypeVar
from uuid import UUID
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from slotbook.core.config import BookingConfig
from slotbook.models import (
    Appointment,
    AppointmentStatus,
    Provider,
    ScheduleSlot,
    SlotStatus,
)
from slotbook.models.appointment import can_transition, is_terminal
from slotbook.schemas import (
    AppointmentSummary,
    BookingRequest,
    RescheduleRequest,
    SlotSummary,
)
from slotbook.services.errors import BookingError, Failure, FailureCode, Outcome
from slotbook.services.repository import (
    SchedulingStore,
    SqlAlchemyStore,
    is_lock_conflict,
    is_unique_violation,
)
from slotbook.services.schedule_resolver import Closed, ScheduleResolver
from slotbook.services.slot_allocator import SlotAllocator, SlotRun
from slotbook.services.slot_generator import GenerationReport, SlotGenerator

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

Clock = Callable[[], datetime]
StoreFactory = Callable[[Session], SchedulingStore]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _contention(operation: str) -> Failure:
    return Failure(
        code=FailureCode.SLOT_CONTENTION,
        message="Another request changed these slots first; read availability again and retry.",
        details={"operation": operation},
    )


def _validate(model: type[M], payload: M | Mapping[str, Any]) -> M | Failure:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        return Failure(
            code=FailureCode.INVALID_REQUEST,
            message="Request failed validation.",
            details={"errors": errors},
        )


def _as_uuid(value: UUID | str) -> UUID | Failure:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return Failure(
            code=FailureCode.INVALID_REQUEST,
            message="Identifier is not a valid UUID.",
            details={"value": value},
        )


class BookingEngine:
    """Book, cancel and reschedule appointments against the slot grid."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: BookingConfig | None = None,
        *,
        clock: Clock | None = None,
        store_factory: StoreFactory | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.config = config or BookingConfig.from_settings()
        self.tz = ZoneInfo(self.config.timezone)
        self.clock = clock or _utcnow
        self.store_factory = store_factory or self._default_store

    # -- transaction plumbing -------------------------------------------------

    def _default_store(self, db: Session) -> SchedulingStore:
        return SqlAlchemyStore(db, lock_nowait=self.config.slot_lock_nowait)

    @contextmanager
    def _transaction(self) -> Iterator[SchedulingStore]:
        with self.session_factory.begin() as db:
            yield self.store_factory(db)

    def _run(self, operation: str, work: Callable[[SchedulingStore], T]) -> Outcome[T]:
        try:
            with self._transaction() as store:
                value = work(store)
        except BookingError as exc:
            return Outcome.rejected(exc.failure)
        except StaleDataError:
            return Outcome.rejected(_contention(operation))
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            return Outcome.rejected(_contention(operation))
        except OperationalError as exc:
            if not is_lock_conflict(exc):
                raise
            return Outcome.rejected(_contention(operation))
        return Outcome.success(value)

    def _now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    # -- public operations ----------------------------------------------------

    def book(self, request: BookingRequest | Mapping[str, Any]) -> Outcome[AppointmentSummary]:
        """Create an appointment at exactly the requested start time."""

        parsed = _validate(BookingRequest, request)
        if isinstance(parsed, Failure):
            return Outcome.rejected(parsed)
        if parsed.slot_count is not None:
            invalid = self._slot_count_failure(parsed.slot_count)
            if invalid:
                return Outcome.rejected(invalid)
        return self._run("book", lambda store: self._book(store, parsed))

    def cancel(
        self, appointment_id: UUID | str, reason: str | None = None
    ) -> Outcome[AppointmentSummary]:
        """Cancel an appointment and release its slots."""

        key = _as_uuid(appointment_id)
        if isinstance(key, Failure):
            return Outcome.rejected(key)
        return self._run("cancel", lambda store: self._cancel(store, key, reason))

    def reschedule(
        self,
        appointment_id: UUID | str,
        new_date: date | str,
        new_start_time: time | str,
        reason: str | None = None,
    ) -> Outcome[AppointmentSummary]:
        """Move an appointment in place; the original booking survives any failure."""

        key = _as_uuid(appointment_id)
        if isinstance(key, Failure):
            return Outcome.rejected(key)
        parsed = _validate(
            RescheduleRequest,
            {"new_date": new_date, "new_start_time": new_start_time, "reason": reason},
        )
        if isinstance(parsed, Failure):
            return Outcome.rejected(parsed)
        return self._run("reschedule", lambda store: self._reschedule(store, key, parsed))

    def confirm(self, appointment_id: UUID | str) -> Outcome[AppointmentSummary]:
        return self._change_status("confirm", appointment_id, AppointmentStatus.CONFIRMED)

    def complete(self, appointment_id: UUID | str) -> Outcome[AppointmentSummary]:
        return self._change_status("complete", appointment_id, AppointmentStatus.COMPLETED)

    def mark_no_show(self, appointment_id: UUID | str) -> Outcome[AppointmentSummary]:
        return self._change_status("no_show", appointment_id, AppointmentStatus.NO_SHOW)

    def get_appointment(self, appointment_id: UUID | str) -> Outcome[AppointmentSummary]:
        key = _as_uuid(appointment_id)
        if isinstance(key, Failure):
            return Outcome.rejected(key)

        def read(store: SchedulingStore) -> AppointmentSummary:
            appointment = self._require_appointment(store, key, for_update=False)
            numbers = tuple(slot.slot_number for slot in store.slots_for_appointment(key))
            return AppointmentSummary.from_model(appointment, numbers)

        return self._run("get", read)

    def availability(
        self, provider_id: UUID, target_date: date, slot_count: int | None = None
    ) -> Outcome[list[SlotRun]]:
        """List every start time where the requested run is free, generating slots lazily."""

        if slot_count is not None:
            invalid = self._slot_count_failure(slot_count)
            if invalid:
                return Outcome.rejected(invalid)

        def read(store: SchedulingStore) -> list[SlotRun]:
            provider = self._require_active_provider(store, provider_id)
            count = slot_count or provider.slots_per_appointment
            self._ensure_slots(store, provider.id, target_date)
            allocator = SlotAllocator(store, self.config.slot_minutes)
            return allocator.available_runs(provider.id, target_date, count)

        return self._run("availability", read)

    def block_slot(self, slot_id: UUID, reason: str) -> Outcome[SlotSummary]:
        def block(store: SchedulingStore) -> SlotSummary:
            slot = self._require_slot(store, slot_id)
            if slot.status == SlotStatus.BOOKED:
                raise BookingError.of(
                    FailureCode.SLOT_BOOKED,
                    "The requested slot is already booked.",
                    slot_id=slot_id,
                )
            slot.status = SlotStatus.BLOCKED
            slot.blocked_reason = reason
            store.flush()
            return SlotSummary.from_model(slot)

        return self._run("block_slot", block)

    def unblock_slot(self, slot_id: UUID) -> Outcome[SlotSummary]:
        def unblock(store: SchedulingStore) -> SlotSummary:
            slot = self._require_slot(store, slot_id)
            if slot.status == SlotStatus.BOOKED:
                raise BookingError.of(
                    FailureCode.SLOT_BOOKED,
                    "The requested slot is booked, not blocked.",
                    slot_id=slot_id,
                )
            if slot.status == SlotStatus.BLOCKED:
                slot.status = SlotStatus.AVAILABLE
                slot.blocked_reason = None
                store.flush()
            return SlotSummary.from_model(slot)

        return self._run("unblock_slot", unblock)

    def regenerate_slots(self, provider_id: UUID, target_date: date) -> Outcome[int]:
        """Rebuild a date's slots after its schedule changed; refused once booked."""

        def regenerate(store: SchedulingStore) -> int:
            self._require_active_provider(store, provider_id)
            generator = SlotGenerator(store, self.config.slot_minutes)
            return len(generator.regenerate(provider_id, target_date))

        return self._run("regenerate", regenerate)

    def pre_generate(
        self, start: date, days: int, provider_id: UUID | None = None
    ) -> Outcome[GenerationReport]:
        """Generate missing slots for ``days`` dates from ``start``.

        Without ``provider_id`` every active provider is handled in its own
        savepoint: a provider whose schedule cannot be partitioned is listed
        in ``GenerationReport.failed`` and the others keep their new slots.
        """

        def generate(store: SchedulingStore) -> GenerationReport:
            generator = SlotGenerator(store, self.config.slot_minutes)
            if provider_id is None:
                return generator.generate_upcoming(start, days)
            self._require_active_provider(store, provider_id)
            end = start + timedelta(days=days - 1)
            return GenerationReport(created=generator.generate_range(provider_id, start, end))

        return self._run("pre_generate", generate)

    # -- operation bodies -----------------------------------------------------

    def _book(self, store: SchedulingStore, request: BookingRequest) -> AppointmentSummary:
        provider = self._require_active_provider(store, request.provider_id)
        if store.get_patient(request.patient_id) is None:
            raise BookingError.of(
                FailureCode.PATIENT_NOT_FOUND,
                "The specified patient was not found.",
                patient_id=request.patient_id,
            )

        slot_count = request.slot_count or provider.slots_per_appointment
        invalid = self._slot_count_failure(slot_count)
        if invalid:
            raise BookingError(invalid)

        start = request.preferred_time
        end = self._end_time(start, slot_count)
        self._check_timing(request.date, start)
        self._check_daily_limits(store, provider, request.patient_id, request.date)
        self._check_patient_overlap(store, request.patient_id, request.date, start, end)

        self._ensure_slots(store, provider.id, request.date)
        allocator = SlotAllocator(store, self.config.slot_minutes)
        run = allocator.find_and_reserve(provider.id, request.date, start, slot_count)

        appointment = Appointment(
            id=uuid.uuid4(),
            patient_id=request.patient_id,
            provider_id=provider.id,
            call_id=request.call_id,
            date=request.date,
            start_time=start,
            end_time=end,
            slot_count=slot_count,
            status=AppointmentStatus.SCHEDULED,
            type=request.type,
            reason=request.reason,
            notes=request.notes,
        )
        store.add_appointment(appointment)
        self._stamp(run, appointment.id)
        store.flush()
        return AppointmentSummary.from_model(appointment, tuple(s.slot_number for s in run))

    def _cancel(
        self, store: SchedulingStore, appointment_id: UUID, reason: str | None
    ) -> AppointmentSummary:
        appointment = self._require_appointment(store, appointment_id, for_update=True)
        self._check_transition(appointment, AppointmentStatus.CANCELLED)

        self._release(store, appointment.id)
        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancelled_at = self.clock()
        appointment.cancellation_reason = reason
        store.flush()
        return AppointmentSummary.from_model(appointment)

    def _reschedule(
        self, store: SchedulingStore, appointment_id: UUID, request: RescheduleRequest
    ) -> AppointmentSummary:
        appointment = self._require_appointment(store, appointment_id, for_update=True)
        if appointment.status == AppointmentStatus.CANCELLED:
            raise BookingError.of(
                FailureCode.ALREADY_CANCELLED,
                "This appointment has already been cancelled.",
                appointment_id=appointment_id,
            )
        if is_terminal(appointment.status):
            raise BookingError.of(
                FailureCode.TERMINAL_STATUS,
                f"Appointments in status {appointment.status.value} cannot be rescheduled.",
                appointment_id=appointment_id,
                status=appointment.status.value,
            )

        provider = self._require_active_provider(store, appointment.provider_id)
        start = request.new_start_time
        end = self._end_time(start, appointment.slot_count)
        self._check_timing(request.new_date, start)
        self._check_daily_limits(
            store, provider, appointment.patient_id, request.new_date, exclude=appointment.id
        )
        self._check_patient_overlap(
            store,
            appointment.patient_id,
            request.new_date,
            start,
            end,
            exclude=appointment.id,
        )

        # Released rows must be visible to the lock query below, since the new
        # run may overlap the old one.
        self._release(store, appointment.id)
        self._ensure_slots(store, provider.id, request.new_date)
        allocator = SlotAllocator(store, self.config.slot_minutes)
        run = allocator.find_and_reserve(
            provider.id, request.new_date, start, appointment.slot_count
        )
        self._stamp(run, appointment.id)

        appointment.date = request.new_date
        appointment.start_time = start
        appointment.end_time = end
        if request.reason:
            appointment.notes = request.reason
        store.flush()
        return AppointmentSummary.from_model(appointment, tuple(s.slot_number for s in run))

    def _change_status(
        self, operation: str, appointment_id: UUID | str, target: AppointmentStatus
    ) -> Outcome[AppointmentSummary]:
        key = _as_uuid(appointment_id)
        if isinstance(key, Failure):
            return Outcome.rejected(key)

        def change(store: SchedulingStore) -> AppointmentSummary:
            appointment = self._require_appointment(store, key, for_update=True)
            self._check_transition(appointment, target)
            appointment.status = target
            store.flush()
            numbers = tuple(slot.slot_number for slot in store.slots_for_appointment(key))
            return AppointmentSummary.from_model(appointment, numbers)

        return self._run(operation, change)

    # -- rules ----------------------------------------------------------------

    def _slot_count_failure(self, slot_count: int) -> Failure | None:
        low = self.config.min_slots_per_appointment
        high = self.config.max_slots_per_appointment
        if low <= slot_count <= high:
            return None
        return Failure(
            code=FailureCode.INVALID_SLOT_COUNT,
            message=f"Slot count must be between {low} and {high}.",
            details={"slot_count": slot_count},
        )

    def _require_active_provider(self, store: SchedulingStore, provider_id: UUID) -> Provider:
        provider = store.get_provider(provider_id)
        if provider is None:
            raise BookingError.of(
                FailureCode.PROVIDER_NOT_FOUND,
                "The specified provider was not found.",
                provider_id=provider_id,
            )
        if not provider.is_active:
            raise BookingError.of(
                FailureCode.PROVIDER_INACTIVE,
                "The selected provider is not currently active.",
                provider_id=provider_id,
            )
        return provider

    def _require_appointment(
        self, store: SchedulingStore, appointment_id: UUID, *, for_update: bool
    ) -> Appointment:
        appointment = store.get_appointment(appointment_id, for_update=for_update)
        if appointment is None:
            raise BookingError.of(
                FailureCode.APPOINTMENT_NOT_FOUND,
                "The specified appointment was not found.",
                appointment_id=appointment_id,
            )
        return appointment

    def _require_slot(self, store: SchedulingStore, slot_id: UUID) -> ScheduleSlot:
        slot = store.lock_slot(slot_id)
        if slot is None:
            raise BookingError.of(
                FailureCode.SLOT_NOT_FOUND,
                "The specified slot was not found.",
                slot_id=slot_id,
            )
        return slot

    def _check_transition(self, appointment: Appointment, target: AppointmentStatus) -> None:
        current = appointment.status
        if can_transition(current, target):
            return
        if current == AppointmentStatus.CANCELLED:
            raise BookingError.of(
                FailureCode.ALREADY_CANCELLED,
                "This appointment has already been cancelled.",
                appointment_id=appointment.id,
            )
        if is_terminal(current):
            raise BookingError.of(
                FailureCode.TERMINAL_STATUS,
                f"Appointment is already {current.value} and cannot change.",
                appointment_id=appointment.id,
                status=current.value,
            )
        raise BookingError.of(
            FailureCode.INVALID_TRANSITION,
            f"Cannot move an appointment from {current.value} to {target.value}.",
            appointment_id=appointment.id,
            status=current.value,
            target=target.value,
        )

    def _check_timing(self, target_date: date, start: time) -> None:
        now = self._now()
        today = now.date()
        starts_at = datetime.combine(target_date, start, tzinfo=self.tz)
        if target_date < today or starts_at < now:
            raise BookingError.of(
                FailureCode.DATE_IN_PAST,
                "Cannot book appointments in the past.",
                date=target_date,
                start_time=start,
            )

        horizon = self.config.booking_advance_days
        if target_date > today + timedelta(days=horizon):
            raise BookingError.of(
                FailureCode.BEYOND_ADVANCE_LIMIT,
                f"Cannot book appointments more than {horizon} days in advance.",
                date=target_date,
                max_days=horizon,
            )

        notice = self.config.minimum_notice_hours
        if starts_at < now + timedelta(hours=notice):
            raise BookingError.of(
                FailureCode.MINIMUM_NOTICE,
                f"Appointments require at least {notice} hours notice.",
                date=target_date,
                start_time=start,
                minimum_notice_hours=notice,
            )

    def _check_daily_limits(
        self,
        store: SchedulingStore,
        provider: Provider,
        patient_id: UUID,
        target_date: date,
        *,
        exclude: UUID | None = None,
    ) -> None:
        patient_cap = self.config.max_appointments_per_patient_per_day
        booked = store.count_patient_appointments(patient_id, target_date, exclude=exclude)
        if booked >= patient_cap:
            raise BookingError.of(
                FailureCode.PATIENT_DAILY_LIMIT,
                f"Patient has reached the maximum of {patient_cap} appointments per day.",
                patient_id=patient_id,
                date=target_date,
                limit=patient_cap,
            )

        provider_cap = provider.max_appointments_per_day
        booked = store.count_provider_appointments(provider.id, target_date, exclude=exclude)
        if booked >= provider_cap:
            raise BookingError.of(
                FailureCode.PROVIDER_DAILY_LIMIT,
                f"Provider has reached the maximum of {provider_cap} appointments per day.",
                provider_id=provider.id,
                date=target_date,
                limit=provider_cap,
            )

    def _check_patient_overlap(
        self,
        store: SchedulingStore,
        patient_id: UUID,
        target_date: date,
        start: time,
        end: time,
        *,
        exclude: UUID | None = None,
    ) -> None:
        if store.patient_overlap_exists(patient_id, target_date, start, end, exclude=exclude):
            raise BookingError.of(
                FailureCode.PATIENT_TIME_CONFLICT,
                "Patient has a conflicting appointment at this time.",
                patient_id=patient_id,
                date=target_date,
                start_time=start,
                end_time=end,
            )

    # -- slot helpers ---------------------------------------------------------

    def _ensure_slots(self, store: SchedulingStore, provider_id: UUID, target_date: date) -> None:
        window = ScheduleResolver(store).resolve(provider_id, target_date)
        if isinstance(window, Closed):
            raise BookingError.of(
                FailureCode.DAY_OFF,
                "The provider is not available on this date.",
                provider_id=provider_id,
                date=target_date,
                closed_reason=window.reason.value,
            )
        SlotGenerator(store, self.config.slot_minutes).generate(provider_id, target_date)

    def _release(self, store: SchedulingStore, appointment_id: UUID) -> list[int]:
        released: list[int] = []
        for slot in store.lock_appointment_slots(appointment_id):
            slot.status = SlotStatus.AVAILABLE
            slot.appointment_id = None
            released.append(slot.slot_number)
        store.flush()
        return released

    def _stamp(self, run: list[ScheduleSlot], appointment_id: UUID) -> None:
        for slot in run:
            slot.appointment_id = appointment_id

    def _end_time(self, start: time, slot_count: int) -> time:
        minutes = slot_count * self.config.slot_minutes
        return (datetime.combine(date.min, start) + timedelta(minutes=minutes)).time()

"""Persistence boundary for the booking engine.

The engine only talks to a :class:`SchedulingStore`. The SQLAlchemy
implementation runs inside the session (and therefore the transaction) the
engine opened for the current call; row locks taken here live until that
transaction commits or rolls back.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import date, time
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from slotbook.models import (
    ACTIVE_STATUSES,
    Appointment,
    Patient,
    Provider,
    ProviderSchedule,
    ScheduleException,
    ScheduleSlot,
)

# lock_not_available, deadlock_detected, serialization_failure
_CONTENTION_SQLSTATES = frozenset({"55P03", "40P01", "40001"})
_CONTENTION_MESSAGES = ("deadlock detected", "could not obtain lock", "database is locked")


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_lock_conflict(exc: OperationalError) -> bool:
    """Return whether a database error means another transaction holds the rows."""

    if _sqlstate(exc) in _CONTENTION_SQLSTATES:
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _CONTENTION_MESSAGES)


def is_unique_violation(exc: IntegrityError) -> bool:
    if _sqlstate(exc) == "23505":
        return True
    message = str(exc).lower()
    return "unique" in message or "duplicate key" in message


class SchedulingStore(Protocol):
    """Operations the engine needs from persistence."""

    def get_provider(self, provider_id: UUID) -> Provider | None: ...

    def list_active_providers(self) -> Sequence[Provider]: ...

    def get_patient(self, patient_id: UUID) -> Patient | None: ...

    def weekly_entry(self, provider_id: UUID, weekday: int) -> ProviderSchedule | None: ...

    def exception_for(self, provider_id: UUID, day: date) -> ScheduleException | None: ...

    def list_slots(self, provider_id: UUID, day: date) -> Sequence[ScheduleSlot]: ...

    def count_slots(self, provider_id: UUID, day: date) -> int: ...

    def add_slots(self, slots: Sequence[ScheduleSlot]) -> bool: ...

    def delete_slots(self, provider_id: UUID, day: date) -> int: ...

    def lock_slot_run(
        self, provider_id: UUID, day: date, first: int, last: int
    ) -> Sequence[ScheduleSlot]: ...

    def lock_slot(self, slot_id: UUID) -> ScheduleSlot | None: ...

    def lock_appointment_slots(self, appointment_id: UUID) -> Sequence[ScheduleSlot]: ...

    def slots_for_appointment(self, appointment_id: UUID) -> Sequence[ScheduleSlot]: ...

    def get_appointment(
        self, appointment_id: UUID, *, for_update: bool = False
    ) -> Appointment | None: ...

    def add_appointment(self, appointment: Appointment) -> None: ...

    def count_patient_appointments(
        self, patient_id: UUID, day: date, *, exclude: UUID | None = None
    ) -> int: ...

    def count_provider_appointments(
        self, provider_id: UUID, day: date, *, exclude: UUID | None = None
    ) -> int: ...

    def patient_overlap_exists(
        self,
        patient_id: UUID,
        day: date,
        start: time,
        end: time,
        *,
        exclude: UUID | None = None,
    ) -> bool: ...

    def savepoint(self) -> AbstractContextManager[Any]: ...

    def flush(self) -> None: ...


class SqlAlchemyStore:
    """``SchedulingStore`` backed by a SQLAlchemy session."""

    def __init__(self, db: Session, *, lock_nowait: bool = False) -> None:
        self.db = db
        self.lock_nowait = lock_nowait

    def get_provider(self, provider_id: UUID) -> Provider | None:
        return self.db.get(Provider, provider_id)

    def list_active_providers(self) -> Sequence[Provider]:
        stmt = select(Provider).where(Provider.is_active.is_(True)).order_by(Provider.full_name)
        return self.db.execute(stmt).scalars().all()

    def get_patient(self, patient_id: UUID) -> Patient | None:
        return self.db.get(Patient, patient_id)

    def weekly_entry(self, provider_id: UUID, weekday: int) -> ProviderSchedule | None:
        stmt = select(ProviderSchedule).where(
            ProviderSchedule.provider_id == provider_id,
            ProviderSchedule.day_of_week == weekday,
        )
        return self.db.execute(stmt).scalars().first()

    def exception_for(self, provider_id: UUID, day: date) -> ScheduleException | None:
        stmt = select(ScheduleException).where(
            ScheduleException.provider_id == provider_id,
            ScheduleException.date == day,
        )
        return self.db.execute(stmt).scalars().first()

    def list_slots(self, provider_id: UUID, day: date) -> Sequence[ScheduleSlot]:
        stmt = (
            select(ScheduleSlot)
            .where(ScheduleSlot.provider_id == provider_id, ScheduleSlot.date == day)
            .order_by(ScheduleSlot.slot_number)
        )
        return self.db.execute(stmt).scalars().all()

    def count_slots(self, provider_id: UUID, day: date) -> int:
        stmt = select(func.count(ScheduleSlot.id)).where(
            ScheduleSlot.provider_id == provider_id, ScheduleSlot.date == day
        )
        return int(self.db.execute(stmt).scalar_one())

    def add_slots(self, slots: Sequence[ScheduleSlot]) -> bool:
        """Insert a date's slot grid; return False if another transaction already did.

        The insert runs in a savepoint so losing the unique
        ``(provider, date, slot_number)`` race leaves the surrounding
        transaction usable and the caller can read the winner's rows.
        """

        try:
            with self.db.begin_nested():
                self.db.add_all(slots)
                self.db.flush()
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            return False
        return True

    def delete_slots(self, provider_id: UUID, day: date) -> int:
        stmt = delete(ScheduleSlot).where(
            ScheduleSlot.provider_id == provider_id, ScheduleSlot.date == day
        )
        result = self.db.execute(stmt, execution_options={"synchronize_session": False})
        self.db.expire_all()
        return int(result.rowcount or 0)

    def lock_slot_run(
        self, provider_id: UUID, day: date, first: int, last: int
    ) -> Sequence[ScheduleSlot]:
        """Return slots ``first..last`` locked ``FOR UPDATE`` in slot order.

        Rows are locked in ascending slot number so two overlapping requests
        always acquire locks in the same order. ``populate_existing`` makes the
        caller see the row state as of the lock, not a stale identity-map copy,
        so pending changes are flushed first.
        """

        self.db.flush()
        stmt = (
            select(ScheduleSlot)
            .where(
                ScheduleSlot.provider_id == provider_id,
                ScheduleSlot.date == day,
                ScheduleSlot.slot_number >= first,
                ScheduleSlot.slot_number <= last,
            )
            .order_by(ScheduleSlot.slot_number)
            .with_for_update(nowait=self.lock_nowait)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().all()

    def lock_slot(self, slot_id: UUID) -> ScheduleSlot | None:
        stmt = (
            select(ScheduleSlot)
            .where(ScheduleSlot.id == slot_id)
            .with_for_update(nowait=self.lock_nowait)
        )
        return self.db.execute(stmt).scalars().first()

    def lock_appointment_slots(self, appointment_id: UUID) -> Sequence[ScheduleSlot]:
        stmt = (
            select(ScheduleSlot)
            .where(ScheduleSlot.appointment_id == appointment_id)
            .order_by(ScheduleSlot.date, ScheduleSlot.slot_number)
            .with_for_update(nowait=self.lock_nowait)
        )
        return self.db.execute(stmt).scalars().all()

    def slots_for_appointment(self, appointment_id: UUID) -> Sequence[ScheduleSlot]:
        stmt = (
            select(ScheduleSlot)
            .where(ScheduleSlot.appointment_id == appointment_id)
            .order_by(ScheduleSlot.date, ScheduleSlot.slot_number)
        )
        return self.db.execute(stmt).scalars().all()

    def get_appointment(
        self, appointment_id: UUID, *, for_update: bool = False
    ) -> Appointment | None:
        stmt = select(Appointment).where(Appointment.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update(nowait=self.lock_nowait)
        return self.db.execute(stmt).scalars().first()

    def add_appointment(self, appointment: Appointment) -> None:
        self.db.add(appointment)
        self.db.flush()

    def count_patient_appointments(
        self, patient_id: UUID, day: date, *, exclude: UUID | None = None
    ) -> int:
        stmt = select(func.count(Appointment.id)).where(
            Appointment.patient_id == patient_id,
            Appointment.date == day,
            Appointment.status.in_(ACTIVE_STATUSES),
        )
        if exclude is not None:
            stmt = stmt.where(Appointment.id != exclude)
        return int(self.db.execute(stmt).scalar_one())

    def count_provider_appointments(
        self, provider_id: UUID, day: date, *, exclude: UUID | None = None
    ) -> int:
        stmt = select(func.count(Appointment.id)).where(
            Appointment.provider_id == provider_id,
            Appointment.date == day,
            Appointment.status.in_(ACTIVE_STATUSES),
        )
        if exclude is not None:
            stmt = stmt.where(Appointment.id != exclude)
        return int(self.db.execute(stmt).scalar_one())

    def patient_overlap_exists(
        self,
        patient_id: UUID,
        day: date,
        start: time,
        end: time,
        *,
        exclude: UUID | None = None,
    ) -> bool:
        stmt = select(Appointment.id).where(
            Appointment.patient_id == patient_id,
            Appointment.date == day,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        if exclude is not None:
            stmt = stmt.where(Appointment.id != exclude)
        return self.db.execute(stmt.limit(1)).first() is not None

    def savepoint(self) -> AbstractContextManager[Any]:
        return self.db.begin_nested()

    def flush(self) -> None:
        self.db.flush()

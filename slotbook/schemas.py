"""Request models and read snapshots exchanged with the booking engine."""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from pydantic import BaseModel, field_validator

from slotbook.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    ScheduleSlot,
    SlotStatus,
)

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: Any) -> dt.time:
    """Accept ``HH:MM`` strings or ``time`` objects."""

    if isinstance(value, dt.time):
        return value.replace(tzinfo=None)
    if isinstance(value, str):
        match = _HHMM.match(value.strip())
        if match:
            return dt.time(int(match.group(1)), int(match.group(2)))
    raise ValueError("time must use the HH:MM format")


class BookingRequest(BaseModel):
    patient_id: UUID
    provider_id: UUID
    date: dt.date
    preferred_time: dt.time
    slot_count: int | None = None
    type: AppointmentType = AppointmentType.GENERAL
    reason: str | None = None
    notes: str | None = None
    call_id: UUID | None = None

    @field_validator("preferred_time", mode="before")
    @classmethod
    def _parse_time(cls, value: Any) -> dt.time:
        return parse_hhmm(value)


class CancelRequest(BaseModel):
    reason: str | None = None


class BlockSlotRequest(BaseModel):
    reason: str


class RescheduleRequest(BaseModel):
    new_date: dt.date
    new_start_time: dt.time
    reason: str | None = None

    @field_validator("new_start_time", mode="before")
    @classmethod
    def _parse_time(cls, value: Any) -> dt.time:
        return parse_hhmm(value)


@dataclass(frozen=True)
class AppointmentSummary:
    """Detached view of an appointment after its transaction closed."""

    id: UUID
    patient_id: UUID
    provider_id: UUID
    call_id: UUID | None
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    slot_count: int
    slot_numbers: tuple[int, ...]
    status: AppointmentStatus
    type: AppointmentType
    reason: str | None
    notes: str | None
    cancelled_at: dt.datetime | None
    cancellation_reason: str | None

    @classmethod
    def from_model(
        cls, appointment: Appointment, slot_numbers: tuple[int, ...] = ()
    ) -> AppointmentSummary:
        return cls(
            id=appointment.id,
            patient_id=appointment.patient_id,
            provider_id=appointment.provider_id,
            call_id=appointment.call_id,
            date=appointment.date,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            slot_count=appointment.slot_count,
            slot_numbers=slot_numbers,
            status=appointment.status,
            type=appointment.type,
            reason=appointment.reason,
            notes=appointment.notes,
            cancelled_at=appointment.cancelled_at,
            cancellation_reason=appointment.cancellation_reason,
        )

    def as_dict(self) -> dict[str, Any]:
        """Convert the summary into JSON-friendly values."""

        return {
            "id": str(self.id),
            "patient_id": str(self.patient_id),
            "provider_id": str(self.provider_id),
            "call_id": str(self.call_id) if self.call_id else None,
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "slot_count": self.slot_count,
            "slot_numbers": list(self.slot_numbers),
            "status": self.status.value,
            "type": self.type.value,
            "reason": self.reason,
            "notes": self.notes,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
        }


@dataclass(frozen=True)
class SlotSummary:
    """Serialized view of a single slot."""

    slot_id: UUID
    provider_id: UUID
    date: dt.date
    slot_number: int
    start_time: dt.time
    end_time: dt.time
    status: SlotStatus
    appointment_id: UUID | None
    blocked_reason: str | None

    @classmethod
    def from_model(cls, slot: ScheduleSlot) -> SlotSummary:
        return cls(
            slot_id=slot.id,
            provider_id=slot.provider_id,
            date=slot.date,
            slot_number=slot.slot_number,
            start_time=slot.start_time,
            end_time=slot.end_time,
            status=slot.status,
            appointment_id=slot.appointment_id,
            blocked_reason=slot.blocked_reason,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "slot_id": str(self.slot_id),
            "provider_id": str(self.provider_id),
            "date": self.date.isoformat(),
            "slot_number": self.slot_number,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "status": self.status.value,
            "appointment_id": str(self.appointment_id) if self.appointment_id else None,
            "blocked_reason": self.blocked_reason,
        }

"""SQLAlchemy models for the Slotbook scheduling engine."""

from slotbook.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    AppointmentType,
)
from slotbook.models.patient import Patient
from slotbook.models.provider import (
    ExceptionKind,
    Provider,
    ProviderSchedule,
    ScheduleException,
)
from slotbook.models.schedule_slot import ScheduleSlot, SlotStatus

__all__ = [
    "ACTIVE_STATUSES",
    "Appointment",
    "AppointmentStatus",
    "AppointmentType",
    "ExceptionKind",
    "Patient",
    "Provider",
    "ProviderSchedule",
    "ScheduleException",
    "ScheduleSlot",
    "SlotStatus",
]

"""Import SQLAlchemy models so Alembic sees the full metadata."""

from slotbook.models.base import Base
from slotbook.models import (  # noqa: F401
    Appointment,
    Patient,
    Provider,
    ProviderSchedule,
    ScheduleException,
    ScheduleSlot,
)

__all__ = [
    "Base",
    "Appointment",
    "Patient",
    "Provider",
    "ProviderSchedule",
    "ScheduleException",
    "ScheduleSlot",
]

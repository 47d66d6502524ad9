from __future__ import annotations

import datetime as dt
import enum
import uuid
from datetime import time

from sqlalchemy import (
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from slotbook.models.base import Base, TimestampMixin


class Provider(Base, TimestampMixin):
    """Care provider (doctor, nurse, etc.) with booking defaults."""

    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(255), nullable=True)
    slots_per_appointment: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    max_appointments_per_day: Mapped[int] = mapped_column(
        Integer, default=12, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)


class ProviderSchedule(Base, TimestampMixin):
    """Weekly recurring working window, keyed by ``date.weekday()``."""

    __tablename__ = "provider_schedules"
    __table_args__ = (
        UniqueConstraint("provider_id", "day_of_week", name="uq_provider_schedules_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("providers.id", ondelete="CASCADE"), index=True
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ExceptionKind(str, enum.Enum):
    """Kinds of date-specific schedule overrides."""

    DAY_OFF = "DAY_OFF"
    CUSTOM_HOURS = "CUSTOM_HOURS"


class ScheduleException(Base, TimestampMixin):
    """Date-specific override of the weekly schedule."""

    __tablename__ = "schedule_exceptions"
    __table_args__ = (
        UniqueConstraint("provider_id", "date", name="uq_schedule_exceptions_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("providers.id", ondelete="CASCADE"), index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    kind: Mapped[ExceptionKind] = mapped_column(
        Enum(ExceptionKind, name="schedule_exception_kind"),
        default=ExceptionKind.DAY_OFF,
        nullable=False,
    )
    # Only meaningful for CUSTOM_HOURS.
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

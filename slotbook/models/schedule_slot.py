from __future__ import annotations

import datetime as dt
import enum
import uuid
from datetime import time

from sqlalchemy import (
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from slotbook.models.base import Base, TimestampMixin


class SlotStatus(str, enum.Enum):
    """Possible states for a schedule slot."""

    AVAILABLE = "AVAILABLE"
    BOOKED = "BOOKED"
    BLOCKED = "BLOCKED"


class ScheduleSlot(Base, TimestampMixin):
    """One fixed-size bookable unit of a provider's day."""

    __tablename__ = "schedule_slots"
    __table_args__ = (
        UniqueConstraint(
            "provider_id", "date", "slot_number", name="uq_schedule_slots_number"
        ),
        Index("ix_schedule_slots_provider_date_status", "provider_id", "date", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("providers.id", ondelete="CASCADE"), index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    slot_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        Enum(SlotStatus, name="schedule_slot_status"),
        default=SlotStatus.AVAILABLE,
        nullable=False,
    )
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    blocked_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Every UPDATE is guarded by the version read in the same transaction.
    __mapper_args__ = {"version_id_col": version_id}

"""Resolve a provider's effective working window for one calendar date."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time
from uuid import UUID

from slotbook.models import ExceptionKind, ProviderSchedule, ScheduleException
from slotbook.services.errors import BookingError, FailureCode
from slotbook.services.repository import SchedulingStore


@dataclass(frozen=True)
class WorkingWindow:
    """Open interval of a working day, both ends in local wall-clock time."""

    start: time
    end: time

    @property
    def minutes(self) -> int:
        opened = datetime.combine(date.min, self.start)
        closed = datetime.combine(date.min, self.end)
        return int((closed - opened).total_seconds() // 60)


class ClosedReason(str, enum.Enum):
    DAY_OFF = "DAY_OFF"
    NOT_SCHEDULED = "NOT_SCHEDULED"


@dataclass(frozen=True)
class Closed:
    """The provider does not work on the date."""

    reason: ClosedReason


def resolve_window(
    weekly: ProviderSchedule | None,
    exception: ScheduleException | None,
    target_date: date,
) -> WorkingWindow | Closed:
    """Apply exception-over-weekly precedence for ``target_date``."""

    if exception is not None:
        if exception.kind == ExceptionKind.DAY_OFF:
            return Closed(ClosedReason.DAY_OFF)
        if exception.kind == ExceptionKind.CUSTOM_HOURS:
            if exception.start_time is None or exception.end_time is None:
                raise BookingError.of(
                    FailureCode.INVALID_WINDOW,
                    "Custom hours exception is missing its start or end time.",
                    date=target_date,
                )
            return _checked_window(exception.start_time, exception.end_time, target_date)
        raise ValueError(f"Unknown schedule exception kind: {exception.kind!r}")

    if weekly is None or not weekly.is_available:
        return Closed(ClosedReason.NOT_SCHEDULED)
    return _checked_window(weekly.start_time, weekly.end_time, target_date)


def _checked_window(start: time, end: time, target_date: date) -> WorkingWindow:
    if end <= start:
        raise BookingError.of(
            FailureCode.INVALID_WINDOW,
            "Working window must close after it opens.",
            date=target_date,
            start=start,
            end=end,
        )
    return WorkingWindow(start=start, end=end)


class ScheduleResolver:
    """Look up the working window for a provider and date."""

    def __init__(self, store: SchedulingStore) -> None:
        self.store = store

    def resolve(self, provider_id: UUID, target_date: date) -> WorkingWindow | Closed:
        exception = self.store.exception_for(provider_id, target_date)
        weekly = None
        if exception is None:
            weekly = self.store.weekly_entry(provider_id, target_date.weekday())
        return resolve_window(weekly, exception, target_date)

"""Locate and reserve contiguous runs of available slots."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, time
from uuid import UUID

from slotbook.models import ScheduleSlot, SlotStatus
from slotbook.services.errors import BookingError, FailureCode
from slotbook.services.repository import SchedulingStore


@dataclass(frozen=True)
class SlotRun:
    """A bookable start position for ``slot_count`` consecutive slots."""

    slot_number: int
    slot_count: int
    start_time: time
    end_time: time
    duration_minutes: int

    def as_dict(self) -> dict[str, str | int]:
        return {
            "slot_number": self.slot_number,
            "slot_count": self.slot_count,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "duration_minutes": self.duration_minutes,
        }


def slot_number_for(
    first_start: time, desired_start: time, slot_minutes: int
) -> int | None:
    """Map a wall-clock time onto a 1-based slot number.

    Returns ``None`` when the time does not sit on a quantum boundary. The
    result may be below 1 when the time precedes the first slot.
    """

    delta = datetime.combine(date.min, desired_start) - datetime.combine(date.min, first_start)
    seconds = int(delta.total_seconds())
    if seconds % (slot_minutes * 60):
        return None
    return seconds // (slot_minutes * 60) + 1


def consecutive_runs(
    slots: Sequence[ScheduleSlot], slot_count: int, slot_minutes: int
) -> list[SlotRun]:
    """Every start where ``slot_count`` consecutive slots are available."""

    runs: list[SlotRun] = []
    streak: list[ScheduleSlot] = []
    for slot in slots:
        contiguous = bool(streak) and slot.slot_number == streak[-1].slot_number + 1
        if slot.status != SlotStatus.AVAILABLE:
            streak = []
            continue
        streak = streak + [slot] if contiguous else [slot]
        if len(streak) >= slot_count:
            head = streak[-slot_count]
            runs.append(
                SlotRun(
                    slot_number=head.slot_number,
                    slot_count=slot_count,
                    start_time=head.start_time,
                    end_time=slot.end_time,
                    duration_minutes=slot_count * slot_minutes,
                )
            )
    return runs


class SlotAllocator:
    """Reserve an exact run of slots for one provider+date."""

    def __init__(self, store: SchedulingStore, slot_minutes: int = 15) -> None:
        self.store = store
        self.slot_minutes = slot_minutes

    def find_and_reserve(
        self,
        provider_id: UUID,
        target_date: date,
        desired_start: time,
        slot_count: int,
    ) -> list[ScheduleSlot]:
        """Lock slots ``[n, n + slot_count - 1]`` and mark them booked.

        ``n`` is the slot starting exactly at ``desired_start``. The run is
        never shifted to a nearby free position; any problem is raised as a
        ``BookingError`` for the caller to offer alternatives.
        """

        details = {
            "provider_id": provider_id,
            "date": target_date,
            "start_time": desired_start,
            "slot_count": slot_count,
        }
        slots = self.store.list_slots(provider_id, target_date)
        if not slots:
            raise BookingError.of(
                FailureCode.SLOTS_NOT_GENERATED,
                "No slots have been generated for this provider and date.",
                **details,
            )

        first = slot_number_for(slots[0].start_time, desired_start, self.slot_minutes)
        if first is None:
            raise BookingError.of(
                FailureCode.OFF_BOUNDARY,
                f"Start time must fall on a {self.slot_minutes}-minute slot boundary.",
                **details,
            )
        last = first + slot_count - 1
        if first < 1 or last > slots[-1].slot_number:
            raise BookingError.of(
                FailureCode.OUTSIDE_WORKING_HOURS,
                "The requested time is outside working hours.",
                **details,
            )

        run = list(self.store.lock_slot_run(provider_id, target_date, first, last))
        taken = [slot.slot_number for slot in run if slot.status != SlotStatus.AVAILABLE]
        if len(run) != slot_count or taken:
            raise BookingError.of(
                FailureCode.SLOTS_UNAVAILABLE,
                f"Unable to reserve {slot_count} consecutive available slots at "
                f"{desired_start.strftime('%H:%M')}.",
                unavailable_slots=taken,
                **details,
            )

        for slot in run:
            slot.status = SlotStatus.BOOKED
        return run

    def available_runs(
        self, provider_id: UUID, target_date: date, slot_count: int
    ) -> list[SlotRun]:
        slots = self.store.list_slots(provider_id, target_date)
        return consecutive_runs(slots, slot_count, self.slot_minutes)

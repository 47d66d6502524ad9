"""Materialize fixed-size slots from a resolved working window."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from uuid import UUID

from slotbook.models import ScheduleSlot, SlotStatus
from slotbook.services.errors import BookingError, Failure, FailureCode
from slotbook.services.repository import SchedulingStore
from slotbook.services.schedule_resolver import Closed, ScheduleResolver, WorkingWindow


@dataclass
class GenerationReport:
    """Result of a pre-generation run."""

    created: int = 0
    failed: dict[UUID, Failure] = field(default_factory=dict)


def partition_window(
    provider_id: UUID,
    target_date: date,
    window: WorkingWindow,
    slot_minutes: int,
) -> list[ScheduleSlot]:
    """Split ``window`` into consecutive, numbered, available slots."""

    total = window.minutes
    if total % slot_minutes:
        raise BookingError.of(
            FailureCode.WINDOW_NOT_QUANTIZED,
            f"Working window of {total} minutes is not a multiple of {slot_minutes} minutes.",
            provider_id=provider_id,
            date=target_date,
            start=window.start,
            end=window.end,
        )

    step = timedelta(minutes=slot_minutes)
    cursor = datetime.combine(target_date, window.start)
    slots: list[ScheduleSlot] = []
    for number in range(1, total // slot_minutes + 1):
        slots.append(
            ScheduleSlot(
                provider_id=provider_id,
                date=target_date,
                slot_number=number,
                start_time=cursor.time(),
                end_time=(cursor + step).time(),
                status=SlotStatus.AVAILABLE,
            )
        )
        cursor += step
    return slots


class SlotGenerator:
    """Create the slot grid for a provider+date exactly once."""

    def __init__(self, store: SchedulingStore, slot_minutes: int = 15) -> None:
        self.store = store
        self.slot_minutes = slot_minutes
        self.resolver = ScheduleResolver(store)

    def generate(self, provider_id: UUID, target_date: date) -> Sequence[ScheduleSlot]:
        """Return the date's slots, creating them if none exist yet.

        A closed day yields an empty sequence.
        """

        existing = self.store.list_slots(provider_id, target_date)
        if existing:
            return existing

        window = self.resolver.resolve(provider_id, target_date)
        if isinstance(window, Closed):
            return []

        slots = partition_window(provider_id, target_date, window, self.slot_minutes)
        if not self.store.add_slots(slots):
            # A concurrent transaction created the grid first.
            return self.store.list_slots(provider_id, target_date)
        return slots

    def regenerate(self, provider_id: UUID, target_date: date) -> Sequence[ScheduleSlot]:
        """Drop and rebuild the date's slots after a schedule change."""

        existing = self.store.list_slots(provider_id, target_date)
        booked = [slot.slot_number for slot in existing if slot.status == SlotStatus.BOOKED]
        if booked:
            raise BookingError.of(
                FailureCode.DATE_HAS_BOOKINGS,
                "Cannot regenerate slots for a date that already has bookings.",
                provider_id=provider_id,
                date=target_date,
                booked_slots=booked,
            )
        if existing:
            self.store.delete_slots(provider_id, target_date)
        return self.generate(provider_id, target_date)

    def generate_range(self, provider_id: UUID, start: date, end: date) -> int:
        """Generate every date in ``start..end`` inclusive; return new slot count."""

        created = 0
        day = start
        while day <= end:
            if self.store.count_slots(provider_id, day) == 0:
                created += len(self.generate(provider_id, day))
            day += timedelta(days=1)
        return created

    def generate_upcoming(self, start: date, days: int) -> GenerationReport:
        """Pre-generate ``days`` dates from ``start`` for every active provider.

        Each provider runs in its own savepoint so one misconfigured schedule
        only discards that provider's slots.
        """

        end = start + timedelta(days=days - 1)
        report = GenerationReport()
        for provider in self.store.list_active_providers():
            try:
                with self.store.savepoint():
                    report.created += self.generate_range(provider.id, start, end)
            except BookingError as exc:
                report.failed[provider.id] = exc.failure
        return report

from datetime import time

import pytest

from slotbook.models import SlotStatus
from slotbook.services import BookingError, FailureCode, SlotAllocator, SlotGenerator, SqlAlchemyStore
from slotbook.services.slot_allocator import consecutive_runs, slot_number_for

from conftest import TUESDAY


@pytest.fixture
def store(session_factory, clinic):
    db = session_factory()
    store = SqlAlchemyStore(db)
    SlotGenerator(store).generate(clinic.provider_id, TUESDAY)
    yield store
    db.rollback()
    db.close()


def test_slot_number_for_boundaries():
    assert slot_number_for(time(8, 0), time(8, 0), 15) == 1
    assert slot_number_for(time(8, 0), time(9, 0), 15) == 5
    assert slot_number_for(time(8, 0), time(11, 0), 15) == 13
    assert slot_number_for(time(8, 0), time(9, 10), 15) is None
    assert slot_number_for(time(8, 0), time(7, 45), 15) == 0


def test_reserves_exact_run(store, clinic):
    run = SlotAllocator(store).find_and_reserve(clinic.provider_id, TUESDAY, time(9, 0), 2)
    assert [slot.slot_number for slot in run] == [5, 6]
    assert all(slot.status == SlotStatus.BOOKED for slot in run)
    remaining = [s for s in store.list_slots(clinic.provider_id, TUESDAY) if s.status == SlotStatus.AVAILABLE]
    assert len(remaining) == 22


def test_run_at_window_end_fits(store, clinic):
    run = SlotAllocator(store).find_and_reserve(clinic.provider_id, TUESDAY, time(13, 30), 2)
    assert [slot.slot_number for slot in run] == [23, 24]


@pytest.mark.parametrize(
    ("start", "count", "code"),
    [
        (time(13, 45), 2, FailureCode.OUTSIDE_WORKING_HOURS),
        (time(7, 45), 1, FailureCode.OUTSIDE_WORKING_HOURS),
        (time(9, 10), 2, FailureCode.OFF_BOUNDARY),
    ],
)
def test_rejects_runs_outside_grid(store, clinic, start, count, code):
    with pytest.raises(BookingError) as excinfo:
        SlotAllocator(store).find_and_reserve(clinic.provider_id, TUESDAY, start, count)
    assert excinfo.value.failure.code == code
    assert excinfo.value.failure.details["slot_count"] == count


def test_rejects_when_no_slots_generated(store, clinic):
    wednesday = TUESDAY.replace(day=9)
    with pytest.raises(BookingError) as excinfo:
        SlotAllocator(store).find_and_reserve(clinic.provider_id, wednesday, time(9, 0), 2)
    assert excinfo.value.failure.code == FailureCode.SLOTS_NOT_GENERATED


def test_never_shifts_to_a_free_neighbour(store, clinic):
    allocator = SlotAllocator(store)
    allocator.find_and_reserve(clinic.provider_id, TUESDAY, time(9, 15), 1)

    with pytest.raises(BookingError) as excinfo:
        allocator.find_and_reserve(clinic.provider_id, TUESDAY, time(9, 0), 2)
    failure = excinfo.value.failure
    assert failure.code == FailureCode.SLOTS_UNAVAILABLE
    assert failure.details["unavailable_slots"] == [6]
    slots = store.list_slots(clinic.provider_id, TUESDAY)
    assert slots[4].status == SlotStatus.AVAILABLE


def test_blocked_slot_is_not_allocatable(store, clinic):
    slots = store.list_slots(clinic.provider_id, TUESDAY)
    slots[0].status = SlotStatus.BLOCKED
    store.flush()

    with pytest.raises(BookingError) as excinfo:
        SlotAllocator(store).find_and_reserve(clinic.provider_id, TUESDAY, time(8, 0), 1)
    assert excinfo.value.failure.code == FailureCode.SLOTS_UNAVAILABLE


def test_available_runs_skip_taken_slots(store, clinic):
    allocator = SlotAllocator(store)
    allocator.find_and_reserve(clinic.provider_id, TUESDAY, time(8, 15), 1)

    runs = allocator.available_runs(clinic.provider_id, TUESDAY, 2)
    starts = [run.slot_number for run in runs]
    assert 1 not in starts
    assert 2 not in starts
    assert starts[0] == 3
    assert starts[-1] == 23
    assert len(runs) == 21
    assert runs[0].as_dict() == {
        "slot_number": 3,
        "slot_count": 2,
        "start_time": "08:30",
        "end_time": "09:00",
        "duration_minutes": 30,
    }


def test_consecutive_runs_empty_when_day_is_full(store, clinic):
    for slot in store.list_slots(clinic.provider_id, TUESDAY):
        slot.status = SlotStatus.BOOKED
    assert consecutive_runs(store.list_slots(clinic.provider_id, TUESDAY), 1, 15) == []

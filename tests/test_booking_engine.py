from datetime import date, time, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from slotbook.models import (
    Appointment,
    AppointmentStatus,
    ExceptionKind,
    Provider,
    ScheduleException,
    SlotStatus,
)
from slotbook.services import FailureCode, FailureKind, SqlAlchemyStore
from conftest import NOW, TUESDAY, booking, seed_clinic


def available_slots(factory, provider_id, day=TUESDAY):
    with factory() as db:
        slots = SqlAlchemyStore(db).list_slots(provider_id, day)
        return sum(1 for slot in slots if slot.status == SlotStatus.AVAILABLE)


def slot_numbers_for(factory, appointment_id):
    with factory() as db:
        return [s.slot_number for s in SqlAlchemyStore(db).slots_for_appointment(appointment_id)]


def appointment_count(factory):
    with factory() as db:
        return db.execute(select(func.count(Appointment.id))).scalar_one()


def book_ok(engine, clinic, preferred_time="09:00", **overrides):
    outcome = engine.book(booking(clinic, preferred_time, **overrides))
    assert outcome.ok, outcome.failure
    return outcome.value


# -- end-to-end fixture -------------------------------------------------------


def test_book_cancel_and_rebook_flow(booking_engine, session_factory, clinic):
    appointment = book_ok(booking_engine, clinic, "09:00")

    assert appointment.slot_numbers == (5, 6)
    assert appointment.start_time == time(9, 0)
    assert appointment.end_time == time(9, 30)
    assert appointment.status == AppointmentStatus.SCHEDULED
    assert slot_numbers_for(session_factory, appointment.id) == [5, 6]
    assert available_slots(session_factory, clinic.provider_id) == 22

    cancelled = booking_engine.cancel(appointment.id, "Patient needs to reschedule").unwrap()

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancelled_at == NOW
    assert cancelled.cancellation_reason == "Patient needs to reschedule"
    assert slot_numbers_for(session_factory, appointment.id) == []
    assert available_slots(session_factory, clinic.provider_id) == 24

    rebooked = book_ok(booking_engine, clinic, "10:00")
    assert rebooked.slot_numbers == (9, 10)
    assert rebooked.start_time == time(10, 0)


def test_reschedule_moves_slots_in_place(booking_engine, session_factory, clinic):
    appointment = book_ok(booking_engine, clinic, "09:00")

    moved = booking_engine.reschedule(appointment.id, TUESDAY, "11:00").unwrap()

    assert moved.id == appointment.id
    assert moved.slot_numbers == (13, 14)
    assert moved.start_time == time(11, 0)
    assert moved.end_time == time(11, 30)
    assert moved.status == AppointmentStatus.SCHEDULED
    assert slot_numbers_for(session_factory, appointment.id) == [13, 14]
    assert available_slots(session_factory, clinic.provider_id) == 22
    with session_factory() as db:
        slots = SqlAlchemyStore(db).list_slots(clinic.provider_id, TUESDAY)
        assert slots[4].status == SlotStatus.AVAILABLE
        assert slots[4].appointment_id is None


def test_reschedule_into_overlapping_run(booking_engine, session_factory, clinic):
    appointment = book_ok(booking_engine, clinic, "09:00")

    moved = booking_engine.reschedule(appointment.id, TUESDAY, "09:15").unwrap()

    assert moved.slot_numbers == (6, 7)
    assert available_slots(session_factory, clinic.provider_id) == 22


def test_reschedule_keeps_confirmed_status(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic)
    booking_engine.confirm(appointment.id).unwrap()

    moved = booking_engine.reschedule(appointment.id, date(2030, 1, 9), "08:00").unwrap()

    assert moved.status == AppointmentStatus.CONFIRMED
    assert moved.date == date(2030, 1, 9)
    assert moved.slot_numbers == (1, 2)


def test_failed_reschedule_leaves_original_booking(booking_engine, session_factory, clinic):
    appointment = book_ok(booking_engine, clinic, "09:00")
    book_ok(booking_engine, clinic, "11:00", patient_id=clinic.other_patient_id)

    outcome = booking_engine.reschedule(appointment.id, TUESDAY, "11:00")

    assert outcome.failure.code == FailureCode.SLOTS_UNAVAILABLE
    assert outcome.failure.kind == FailureKind.AVAILABILITY
    assert slot_numbers_for(session_factory, appointment.id) == [5, 6]
    assert available_slots(session_factory, clinic.provider_id) == 20
    current = booking_engine.get_appointment(appointment.id).unwrap()
    assert current.start_time == time(9, 0)


def test_reschedule_to_closed_day_is_rejected(booking_engine, session_factory, clinic):
    appointment = book_ok(booking_engine, clinic)

    outcome = booking_engine.reschedule(appointment.id, date(2030, 1, 12), "09:00")

    assert outcome.failure.code == FailureCode.DAY_OFF
    assert slot_numbers_for(session_factory, appointment.id) == [5, 6]


def test_reschedule_applies_time_rules(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic)

    outcome = booking_engine.reschedule(appointment.id, date(2030, 1, 4), "09:00")

    assert outcome.failure.code == FailureCode.DATE_IN_PAST


def test_reschedule_cancelled_appointment(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic)
    booking_engine.cancel(appointment.id).unwrap()

    outcome = booking_engine.reschedule(appointment.id, TUESDAY, "10:00")

    assert outcome.failure.code == FailureCode.ALREADY_CANCELLED
    assert outcome.failure.kind == FailureKind.STATE_CONFLICT


def test_reschedule_rejects_malformed_time(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic)

    outcome = booking_engine.reschedule(appointment.id, TUESDAY, "25:00")

    assert outcome.failure.code == FailureCode.INVALID_REQUEST


# -- booking rules ------------------------------------------------------------


def test_slot_count_defaults_to_provider_setting(session_factory, booking_engine):
    clinic = seed_clinic(session_factory, slots_per_appointment=3)

    appointment = book_ok(booking_engine, clinic, "08:00")

    assert appointment.slot_count == 3
    assert appointment.slot_numbers == (1, 2, 3)
    assert appointment.end_time == time(8, 45)


def test_explicit_slot_count_overrides_provider(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic, "08:00", slot_count=4)
    assert appointment.slot_numbers == (1, 2, 3, 4)


@pytest.mark.parametrize("slot_count", [0, 5])
def test_slot_count_out_of_range(booking_engine, clinic, slot_count):
    outcome = booking_engine.book(booking(clinic, slot_count=slot_count))
    assert outcome.failure.code == FailureCode.INVALID_SLOT_COUNT
    assert outcome.failure.kind == FailureKind.VALIDATION


@pytest.mark.parametrize(
    "overrides",
    [{"preferred_time": "9am"}, {"type": "surgery"}, {"date": "2030-13-01"}],
)
def test_malformed_request(booking_engine, clinic, overrides):
    outcome = booking_engine.book(booking(clinic, **overrides))
    assert outcome.failure.code == FailureCode.INVALID_REQUEST
    assert outcome.failure.kind == FailureKind.VALIDATION
    assert outcome.failure.details["errors"]


def test_unknown_provider(booking_engine, clinic):
    outcome = booking_engine.book(booking(clinic, provider_id=uuid4()))
    assert outcome.failure.code == FailureCode.PROVIDER_NOT_FOUND
    assert outcome.failure.kind == FailureKind.DOMAIN_RULE


def test_inactive_provider(booking_engine, session_factory, clinic):
    with session_factory.begin() as db:
        db.get(Provider, clinic.provider_id).is_active = False

    outcome = booking_engine.book(booking(clinic))
    assert outcome.failure.code == FailureCode.PROVIDER_INACTIVE


def test_unknown_patient(booking_engine, clinic):
    outcome = booking_engine.book(booking(clinic, patient_id=uuid4()))
    assert outcome.failure.code == FailureCode.PATIENT_NOT_FOUND


@pytest.mark.parametrize(
    ("day", "preferred_time", "code"),
    [
        (date(2030, 1, 6), "09:00", FailureCode.DATE_IN_PAST),
        (date(2030, 1, 7), "05:00", FailureCode.DATE_IN_PAST),
        (date(2030, 1, 7), "07:45", FailureCode.MINIMUM_NOTICE),
        (date(2030, 1, 7) + timedelta(days=91), "09:00", FailureCode.BEYOND_ADVANCE_LIMIT),
    ],
)
def test_time_rules(booking_engine, clinic, day, preferred_time, code):
    outcome = booking_engine.book(booking(clinic, preferred_time, date=day))
    assert outcome.failure.code == code
    assert outcome.failure.kind == FailureKind.DOMAIN_RULE


def test_minimum_notice_boundary_is_bookable(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic, "08:00", date=date(2030, 1, 7))
    assert appointment.slot_numbers == (1, 2)


def test_patient_daily_cap(booking_engine, clinic):
    book_ok(booking_engine, clinic, "09:00")
    book_ok(booking_engine, clinic, "10:00")

    outcome = booking_engine.book(booking(clinic, "11:00"))

    assert outcome.failure.code == FailureCode.PATIENT_DAILY_LIMIT
    assert outcome.failure.details["limit"] == 2


def test_cancelled_appointments_do_not_count_towards_cap(booking_engine, clinic):
    first = book_ok(booking_engine, clinic, "09:00")
    book_ok(booking_engine, clinic, "10:00")
    booking_engine.cancel(first.id).unwrap()

    book_ok(booking_engine, clinic, "11:00")


def test_provider_daily_cap(booking_engine, session_factory):
    clinic = seed_clinic(session_factory, max_appointments_per_day=1)
    book_ok(booking_engine, clinic, "09:00")

    outcome = booking_engine.book(booking(clinic, "10:00", patient_id=clinic.other_patient_id))

    assert outcome.failure.code == FailureCode.PROVIDER_DAILY_LIMIT


def test_patient_cannot_overlap_own_appointment(booking_engine, clinic):
    book_ok(booking_engine, clinic, "09:00")

    outcome = booking_engine.book(booking(clinic, "09:15", slot_count=1))

    assert outcome.failure.code == FailureCode.PATIENT_TIME_CONFLICT


def test_occupied_run_fails_without_partial_writes(booking_engine, session_factory, clinic):
    book_ok(booking_engine, clinic, "09:00", patient_id=clinic.other_patient_id)

    outcome = booking_engine.book(booking(clinic, "09:15"))

    assert outcome.failure.code == FailureCode.SLOTS_UNAVAILABLE
    assert outcome.failure.details["unavailable_slots"] == [6]
    assert outcome.failure.as_dict()["details"]["date"] == "2030-01-08"
    assert appointment_count(session_factory) == 1
    assert available_slots(session_factory, clinic.provider_id) == 22


def test_off_boundary_and_outside_hours_are_distinct(booking_engine, clinic):
    assert booking_engine.book(booking(clinic, "09:10")).failure.code == FailureCode.OFF_BOUNDARY
    assert (
        booking_engine.book(booking(clinic, "13:45")).failure.code
        == FailureCode.OUTSIDE_WORKING_HOURS
    )


def test_closed_day(booking_engine, session_factory, clinic):
    with session_factory.begin() as db:
        db.add(
            ScheduleException(
                provider_id=clinic.provider_id,
                date=TUESDAY,
                kind=ExceptionKind.DAY_OFF,
                reason="Conference",
            )
        )

    outcome = booking_engine.book(booking(clinic))

    assert outcome.failure.code == FailureCode.DAY_OFF
    assert outcome.failure.details["closed_reason"] == "DAY_OFF"
    assert available_slots(session_factory, clinic.provider_id) == 0


def test_window_off_the_quantum_is_a_configuration_failure(booking_engine, session_factory, clinic):
    with session_factory.begin() as db:
        db.add(
            ScheduleException(
                provider_id=clinic.provider_id,
                date=TUESDAY,
                kind=ExceptionKind.CUSTOM_HOURS,
                start_time=time(8, 0),
                end_time=time(8, 50),
            )
        )

    outcome = booking_engine.book(booking(clinic, "08:00"))

    assert outcome.failure.code == FailureCode.WINDOW_NOT_QUANTIZED
    assert outcome.failure.kind == FailureKind.CONFIGURATION


# -- lifecycle ----------------------------------------------------------------


def test_confirm_then_complete(booking_engine, session_factory, clinic):
    appointment = book_ok(booking_engine, clinic)

    assert booking_engine.confirm(appointment.id).unwrap().status == AppointmentStatus.CONFIRMED
    completed = booking_engine.complete(appointment.id).unwrap()

    assert completed.status == AppointmentStatus.COMPLETED
    assert completed.slot_numbers == (5, 6)
    assert available_slots(session_factory, clinic.provider_id) == 22


def test_complete_requires_confirmation(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic)

    outcome = booking_engine.complete(appointment.id)

    assert outcome.failure.code == FailureCode.INVALID_TRANSITION
    assert outcome.failure.details["target"] == "COMPLETED"


def test_no_show_keeps_slots_booked(booking_engine, session_factory, clinic):
    appointment = book_ok(booking_engine, clinic)

    no_show = booking_engine.mark_no_show(appointment.id).unwrap()

    assert no_show.status == AppointmentStatus.NO_SHOW
    assert slot_numbers_for(session_factory, appointment.id) == [5, 6]


@pytest.mark.parametrize("finish", ["mark_no_show", "complete"])
def test_terminal_appointments_cannot_be_cancelled(booking_engine, clinic, finish):
    appointment = book_ok(booking_engine, clinic)
    booking_engine.confirm(appointment.id).unwrap()
    getattr(booking_engine, finish)(appointment.id).unwrap()

    outcome = booking_engine.cancel(appointment.id)

    assert outcome.failure.code == FailureCode.TERMINAL_STATUS


def test_cancel_twice(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic)
    booking_engine.cancel(appointment.id).unwrap()

    outcome = booking_engine.cancel(appointment.id)

    assert outcome.failure.code == FailureCode.ALREADY_CANCELLED


def test_cancel_unknown_appointment(booking_engine):
    assert booking_engine.cancel(uuid4()).failure.code == FailureCode.APPOINTMENT_NOT_FOUND
    assert booking_engine.cancel("not-a-uuid").failure.code == FailureCode.INVALID_REQUEST


def test_get_appointment(booking_engine, clinic):
    appointment = book_ok(booking_engine, clinic, reason="Annual physical", notes="fasting")

    fetched = booking_engine.get_appointment(str(appointment.id)).unwrap()

    assert fetched == appointment
    assert fetched.as_dict()["start_time"] == "09:00"
    assert fetched.as_dict()["type"] == "general"


# -- availability and slot administration ------------------------------------


def test_availability_generates_lazily(booking_engine, session_factory, clinic):
    runs = booking_engine.availability(clinic.provider_id, TUESDAY).unwrap()

    assert len(runs) == 23
    assert runs[0].start_time == time(8, 0)
    assert available_slots(session_factory, clinic.provider_id) == 24


def test_availability_excludes_booked_runs(booking_engine, clinic):
    book_ok(booking_engine, clinic, "09:00")

    starts = [run.start_time for run in booking_engine.availability(clinic.provider_id, TUESDAY, 1).unwrap()]

    assert time(9, 0) not in starts
    assert time(9, 15) not in starts
    assert len(starts) == 22


def test_availability_on_closed_day(booking_engine, clinic):
    outcome = booking_engine.availability(clinic.provider_id, date(2030, 1, 12))
    assert outcome.failure.code == FailureCode.DAY_OFF
    assert outcome.failure.details["closed_reason"] == "NOT_SCHEDULED"


def test_block_and_unblock_slot(booking_engine, session_factory, clinic):
    booking_engine.availability(clinic.provider_id, TUESDAY).unwrap()
    with session_factory() as db:
        slot_id = SqlAlchemyStore(db).list_slots(clinic.provider_id, TUESDAY)[4].id

    blocked = booking_engine.block_slot(slot_id, "Equipment maintenance").unwrap()
    assert blocked.status == SlotStatus.BLOCKED
    assert blocked.blocked_reason == "Equipment maintenance"
    assert booking_engine.book(booking(clinic, "09:00")).failure.code == FailureCode.SLOTS_UNAVAILABLE

    unblocked = booking_engine.unblock_slot(slot_id).unwrap()
    assert unblocked.status == SlotStatus.AVAILABLE
    assert unblocked.blocked_reason is None
    book_ok(booking_engine, clinic, "09:00")


def test_booked_slot_cannot_be_blocked(booking_engine, session_factory, clinic):
    book_ok(booking_engine, clinic, "09:00")
    with session_factory() as db:
        slot_id = SqlAlchemyStore(db).list_slots(clinic.provider_id, TUESDAY)[4].id

    outcome = booking_engine.block_slot(slot_id, "Maintenance")

    assert outcome.failure.code == FailureCode.SLOT_BOOKED
    assert booking_engine.block_slot(uuid4(), "x").failure.code == FailureCode.SLOT_NOT_FOUND


def test_regenerate_refused_after_booking(booking_engine, clinic):
    book_ok(booking_engine, clinic)

    outcome = booking_engine.regenerate_slots(clinic.provider_id, TUESDAY)

    assert outcome.failure.code == FailureCode.DATE_HAS_BOOKINGS


def test_pre_generate_for_one_provider(booking_engine, session_factory, clinic):
    report = booking_engine.pre_generate(date(2030, 1, 7), 7, clinic.provider_id).unwrap()

    assert report.created == 5 * 24
    assert report.failed == {}
    assert booking_engine.pre_generate(date(2030, 1, 7), 7).unwrap().created == 0


def test_pre_generate_keeps_providers_whose_window_partitions(
    booking_engine, session_factory, clinic
):
    odd = seed_clinic(session_factory, hours=(time(8, 0), time(8, 10)))

    outcome = booking_engine.pre_generate(TUESDAY, 1)

    assert outcome.ok
    assert outcome.value.created == 24
    assert list(outcome.value.failed) == [odd.provider_id]
    assert outcome.value.failed[odd.provider_id].code == FailureCode.WINDOW_NOT_QUANTIZED
    assert available_slots(session_factory, clinic.provider_id) == 24
    assert available_slots(session_factory, odd.provider_id) == 0

"""Scheduling and booking services for the Slotbook API."""

from slotbook.services.booking_engine import BookingEngine
from slotbook.services.errors import (
    BookingError,
    Failure,
    FailureCode,
    FailureKind,
    Outcome,
)
from slotbook.services.repository import SchedulingStore, SqlAlchemyStore
from slotbook.services.schedule_resolver import Closed, ScheduleResolver, WorkingWindow
from slotbook.services.slot_allocator import SlotAllocator, SlotRun
from slotbook.services.slot_generator import GenerationReport, SlotGenerator

__all__ = [
    "BookingEngine",
    "BookingError",
    "Closed",
    "Failure",
    "FailureCode",
    "FailureKind",
    "GenerationReport",
    "Outcome",
    "ScheduleResolver",
    "SchedulingStore",
    "SlotAllocator",
    "SlotGenerator",
    "SlotRun",
    "SqlAlchemyStore",
    "WorkingWindow",
]

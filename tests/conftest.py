from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from uuid import UUID

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from slotbook.core.config import BookingConfig
from slotbook.db.base import Base
from slotbook.models import Patient, Provider, ProviderSchedule
from slotbook.services import BookingEngine

# Monday morning; bookings in the tests target the following Tuesday.
NOW = datetime(2030, 1, 7, 6, 0, tzinfo=timezone.utc)
TUESDAY = date(2030, 1, 8)


@dataclass
class Clinic:
    provider_id: UUID
    patient_id: UUID
    other_patient_id: UUID


def build_session_factory(url: str, **engine_kwargs) -> sessionmaker[Session]:
    engine = create_engine(url, future=True, **engine_kwargs)
    Base.metadata.create_all(engine)
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def seed_clinic(
    factory: sessionmaker[Session],
    *,
    slots_per_appointment: int = 2,
    max_appointments_per_day: int = 12,
    hours: tuple[time, time] = (time(8, 0), time(14, 0)),
) -> Clinic:
    """Create one provider working weekdays plus two patients."""

    with factory.begin() as db:
        provider = Provider(
            full_name="Dr. Sarah Johnson",
            specialty="General Practice",
            slots_per_appointment=slots_per_appointment,
            max_appointments_per_day=max_appointments_per_day,
        )
        patient = Patient(full_name="John Smith", phone_number="+15550100001")
        other = Patient(full_name="Maria Garcia", phone_number="+15550100002")
        db.add_all([provider, patient, other])
        db.flush()
        for weekday in range(5):
            db.add(
                ProviderSchedule(
                    provider_id=provider.id,
                    day_of_week=weekday,
                    start_time=hours[0],
                    end_time=hours[1],
                )
            )
        return Clinic(provider_id=provider.id, patient_id=patient.id, other_patient_id=other.id)


@pytest.fixture
def session_factory() -> sessionmaker[Session]:
    return build_session_factory(
        "sqlite+pysqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def booking_config() -> BookingConfig:
    return BookingConfig()


@pytest.fixture
def booking_engine(session_factory, booking_config) -> BookingEngine:
    return BookingEngine(session_factory, booking_config, clock=lambda: NOW)


@pytest.fixture
def clinic(session_factory) -> Clinic:
    return seed_clinic(session_factory)


def booking(clinic: Clinic, preferred_time: str = "09:00", **overrides) -> dict:
    payload = {
        "patient_id": clinic.patient_id,
        "provider_id": clinic.provider_id,
        "date": TUESDAY,
        "preferred_time": preferred_time,
        "type": "general",
    }
    payload.update(overrides)
    return payload

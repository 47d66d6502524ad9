from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from sqlalchemy import select

from slotbook.core.config import settings
from slotbook.db.session import SessionLocal
from slotbook.logging_utils import configure_logging, set_provider_context
from slotbook.models import Patient, Provider, ProviderSchedule
from slotbook.services import SlotGenerator, SqlAlchemyStore

logger = logging.getLogger(__name__)

# Monday to Friday, 08:00-14:00.
WORKING_DAYS = range(0, 5)
WORKING_HOURS: tuple[time, time] = (time(8, 0), time(14, 0))

PROVIDERS: list[tuple[str, str, int]] = [
    ("Dr. Sarah Johnson", "General Practice", 2),
    ("Dr. Michael Chen", "Cardiology", 2),
    ("Dr. Emily Rodriguez", "Pediatrics", 1),
]

PATIENTS: list[tuple[str, str, str]] = [
    ("John Smith", "john.smith@example.com", "+15550100001"),
    ("Maria Garcia", "maria.garcia@example.com", "+15550100002"),
]


def ensure_providers(session) -> list[Provider]:
    created = 0
    providers: list[Provider] = []
    for name, specialty, slots_per_appointment in PROVIDERS:
        provider = session.execute(
            select(Provider).where(Provider.full_name == name)
        ).scalar_one_or_none()
        if not provider:
            provider = Provider(
                full_name=name,
                specialty=specialty,
                slots_per_appointment=slots_per_appointment,
            )
            session.add(provider)
            session.flush()
            created += 1
        providers.append(provider)

    logger.info("ensured providers", extra={"created": created, "total": len(providers)})
    return providers


def ensure_schedules(session, providers: Iterable[Provider]) -> None:
    created = 0
    start, end = WORKING_HOURS
    for provider in providers:
        for weekday in WORKING_DAYS:
            existing = session.execute(
                select(ProviderSchedule).where(
                    ProviderSchedule.provider_id == provider.id,
                    ProviderSchedule.day_of_week == weekday,
                )
            ).scalar_one_or_none()
            if existing:
                continue
            session.add(
                ProviderSchedule(
                    provider_id=provider.id,
                    day_of_week=weekday,
                    start_time=start,
                    end_time=end,
                    is_available=True,
                )
            )
            created += 1
    session.flush()

    logger.info("ensured weekly schedules", extra={"created": created})


def ensure_patients(session) -> list[Patient]:
    created = 0
    patients: list[Patient] = []
    for name, email, phone in PATIENTS:
        patient = session.execute(
            select(Patient).where(Patient.full_name == name)
        ).scalar_one_or_none()
        if not patient:
            patient = Patient(full_name=name, email=email, phone_number=phone)
            session.add(patient)
            session.flush()
            created += 1
        patients.append(patient)

    logger.info("ensured patients", extra={"created": created, "total": len(patients)})
    return patients


def ensure_slots(session, providers: Iterable[Provider]) -> None:
    today = datetime.now(ZoneInfo(settings.timezone)).date()
    generator = SlotGenerator(SqlAlchemyStore(session), settings.slot_minutes)
    for provider in providers:
        set_provider_context(provider.id)
        end = today + timedelta(days=settings.pre_generate_days - 1)
        created = generator.generate_range(provider.id, today, end)
        logger.info("ensured schedule slots", extra={"created": created})
    set_provider_context(None)


def seed() -> None:
    configure_logging()
    logger.info("starting seed process")

    session = SessionLocal()
    try:
        providers = ensure_providers(session)
        ensure_schedules(session, providers)
        ensure_patients(session)
        ensure_slots(session, providers)
        session.commit()
        logger.info("seed complete")
    except Exception:
        session.rollback()
        logger.exception("seed failed")
        raise
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    seed()

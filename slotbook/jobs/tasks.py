from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from celery.utils.log import get_task_logger

from slotbook.core.config import BookingConfig, settings
from slotbook.db.session import SessionLocal
from slotbook.jobs.celery_app import celery_app
from slotbook.services import BookingEngine

logger = get_task_logger(__name__)


def build_engine() -> BookingEngine:
    return BookingEngine(SessionLocal, BookingConfig.from_settings(settings))


def _resolve_start(start: str | None) -> date:
    """Return the first date to generate, defaulting to today in the clinic timezone."""

    if start:
        try:
            return date.fromisoformat(start)
        except ValueError:
            logger.warning("Invalid start date %s, using today", start)
    return datetime.now(ZoneInfo(settings.timezone)).date()


@celery_app.task(name="slotbook.generate_slots")
def generate_slots(
    start: str | None = None,
    days: int | None = None,
    provider_id: str | None = None,
) -> dict[str, Any]:
    """Pre-generate slots for the upcoming booking window."""

    first_day = _resolve_start(start)
    span = days or settings.pre_generate_days
    provider = UUID(provider_id) if provider_id else None

    outcome = build_engine().pre_generate(first_day, span, provider)
    if not outcome.ok:
        failure = outcome.failure
        logger.error(
            "Slot generation from %s failed: %s (%s)",
            first_day.isoformat(),
            failure.message,
            failure.code.value,
        )
        return {"start": first_day.isoformat(), "days": span, "error": failure.as_dict()}

    report = outcome.value
    for failed_provider, failure in report.failed.items():
        logger.warning(
            "Skipped slot generation for provider %s: %s (%s)",
            failed_provider,
            failure.message,
            failure.code.value,
        )
    logger.info(
        "Generated %s slots for %s days from %s",
        report.created,
        span,
        first_day.isoformat(),
    )
    return {
        "start": first_day.isoformat(),
        "days": span,
        "created": report.created,
        "failed": {str(key): failure.as_dict() for key, failure in report.failed.items()},
    }

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Slotbook API"
    database_url: str = (
        "postgresql+psycopg2://slotbook:slotbook@db:5432/slotbook"  # pragma: allowlist secret
    )
    redis_url: str = "redis://redis:6379/0"
    timezone: str = "UTC"

    slot_minutes: int = 15
    min_slots_per_appointment: int = 1
    max_slots_per_appointment: int = 4
    booking_advance_days: int = 90
    minimum_notice_hours: int = 2
    max_appointments_per_patient_per_day: int = 2
    pre_generate_days: int = 30
    slot_lock_nowait: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


settings = get_settings()


@dataclass(frozen=True)
class BookingConfig:
    """Booking rules handed to the engine explicitly."""

    timezone: str = "UTC"
    slot_minutes: int = 15
    min_slots_per_appointment: int = 1
    max_slots_per_appointment: int = 4
    booking_advance_days: int = 90
    minimum_notice_hours: int = 2
    max_appointments_per_patient_per_day: int = 2
    slot_lock_nowait: bool = False

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> BookingConfig:
        source = source or get_settings()
        return cls(
            timezone=source.timezone,
            slot_minutes=source.slot_minutes,
            min_slots_per_appointment=source.min_slots_per_appointment,
            max_slots_per_appointment=source.max_slots_per_appointment,
            booking_advance_days=source.booking_advance_days,
            minimum_notice_hours=source.minimum_notice_hours,
            max_appointments_per_patient_per_day=source.max_appointments_per_patient_per_day,
            slot_lock_nowait=source.slot_lock_nowait,
        )

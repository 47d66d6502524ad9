"""Typed failure outcomes returned by the booking engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class FailureKind(str, enum.Enum):
    """Broad failure category; decides how a caller reacts."""

    VALIDATION = "VALIDATION"
    DOMAIN_RULE = "DOMAIN_RULE"
    AVAILABILITY = "AVAILABILITY"
    STATE_CONFLICT = "STATE_CONFLICT"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    CONFIGURATION = "CONFIGURATION"


class FailureCode(str, enum.Enum):
    """Specific reason for a rejected request."""

    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_SLOT_COUNT = "INVALID_SLOT_COUNT"

    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    PROVIDER_INACTIVE = "PROVIDER_INACTIVE"
    PATIENT_NOT_FOUND = "PATIENT_NOT_FOUND"
    DATE_IN_PAST = "DATE_IN_PAST"
    BEYOND_ADVANCE_LIMIT = "BEYOND_ADVANCE_LIMIT"
    MINIMUM_NOTICE = "MINIMUM_NOTICE"
    PATIENT_DAILY_LIMIT = "PATIENT_DAILY_LIMIT"
    PROVIDER_DAILY_LIMIT = "PROVIDER_DAILY_LIMIT"
    PATIENT_TIME_CONFLICT = "PATIENT_TIME_CONFLICT"

    DAY_OFF = "DAY_OFF"
    OFF_BOUNDARY = "OFF_BOUNDARY"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
    SLOTS_NOT_GENERATED = "SLOTS_NOT_GENERATED"
    SLOTS_UNAVAILABLE = "SLOTS_UNAVAILABLE"

    APPOINTMENT_NOT_FOUND = "APPOINTMENT_NOT_FOUND"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    TERMINAL_STATUS = "TERMINAL_STATUS"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    SLOT_NOT_FOUND = "SLOT_NOT_FOUND"
    SLOT_BOOKED = "SLOT_BOOKED"
    DATE_HAS_BOOKINGS = "DATE_HAS_BOOKINGS"

    SLOT_CONTENTION = "SLOT_CONTENTION"

    WINDOW_NOT_QUANTIZED = "WINDOW_NOT_QUANTIZED"
    INVALID_WINDOW = "INVALID_WINDOW"


_KIND_BY_CODE: dict[FailureCode, FailureKind] = {
    FailureCode.INVALID_REQUEST: FailureKind.VALIDATION,
    FailureCode.INVALID_SLOT_COUNT: FailureKind.VALIDATION,
    FailureCode.PROVIDER_NOT_FOUND: FailureKind.DOMAIN_RULE,
    FailureCode.PROVIDER_INACTIVE: FailureKind.DOMAIN_RULE,
    FailureCode.PATIENT_NOT_FOUND: FailureKind.DOMAIN_RULE,
    FailureCode.DATE_IN_PAST: FailureKind.DOMAIN_RULE,
    FailureCode.BEYOND_ADVANCE_LIMIT: FailureKind.DOMAIN_RULE,
    FailureCode.MINIMUM_NOTICE: FailureKind.DOMAIN_RULE,
    FailureCode.PATIENT_DAILY_LIMIT: FailureKind.DOMAIN_RULE,
    FailureCode.PROVIDER_DAILY_LIMIT: FailureKind.DOMAIN_RULE,
    FailureCode.PATIENT_TIME_CONFLICT: FailureKind.DOMAIN_RULE,
    FailureCode.DAY_OFF: FailureKind.AVAILABILITY,
    FailureCode.OFF_BOUNDARY: FailureKind.AVAILABILITY,
    FailureCode.OUTSIDE_WORKING_HOURS: FailureKind.AVAILABILITY,
    FailureCode.SLOTS_NOT_GENERATED: FailureKind.AVAILABILITY,
    FailureCode.SLOTS_UNAVAILABLE: FailureKind.AVAILABILITY,
    FailureCode.APPOINTMENT_NOT_FOUND: FailureKind.STATE_CONFLICT,
    FailureCode.ALREADY_CANCELLED: FailureKind.STATE_CONFLICT,
    FailureCode.TERMINAL_STATUS: FailureKind.STATE_CONFLICT,
    FailureCode.INVALID_TRANSITION: FailureKind.STATE_CONFLICT,
    FailureCode.SLOT_NOT_FOUND: FailureKind.STATE_CONFLICT,
    FailureCode.SLOT_BOOKED: FailureKind.STATE_CONFLICT,
    FailureCode.DATE_HAS_BOOKINGS: FailureKind.STATE_CONFLICT,
    FailureCode.SLOT_CONTENTION: FailureKind.CONCURRENCY_CONFLICT,
    FailureCode.WINDOW_NOT_QUANTIZED: FailureKind.CONFIGURATION,
    FailureCode.INVALID_WINDOW: FailureKind.CONFIGURATION,
}

NOT_FOUND_CODES: frozenset[FailureCode] = frozenset(
    {
        FailureCode.PROVIDER_NOT_FOUND,
        FailureCode.PATIENT_NOT_FOUND,
        FailureCode.APPOINTMENT_NOT_FOUND,
        FailureCode.SLOT_NOT_FOUND,
    }
)


@dataclass(frozen=True)
class Failure:
    """A rejected request, tagged with its kind and specific code."""

    code: FailureCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> FailureKind:
        return _KIND_BY_CODE[self.code]

    def as_dict(self) -> dict[str, Any]:
        """Convert the failure into JSON-friendly values."""

        return {
            "kind": self.kind.value,
            "code": self.code.value,
            "message": self.message,
            "details": {key: _jsonable(value) for key, value in self.details.items()},
        }


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an engine call: either ``value`` or ``failure`` is set."""

    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def rejected(cls, failure: Failure) -> Outcome[T]:
        return cls(failure=failure)

    def unwrap(self) -> T:
        """Return the value, raising ``BookingError`` on a failed outcome."""

        if self.failure is not None:
            raise BookingError(self.failure)
        return self.value  # type: ignore[return-value]


class BookingError(Exception):
    """Raised inside a transaction to abort it with a typed failure."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure

    @classmethod
    def of(cls, code: FailureCode, message: str, **details: Any) -> BookingError:
        return cls(Failure(code=code, message=message, details=details))


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)

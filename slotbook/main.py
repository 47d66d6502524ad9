from __future__ import annotations

import datetime as dt
import logging
import time
import uuid
from functools import lru_cache
from typing import Any, TypeVar
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware

from slotbook.core.config import BookingConfig, settings
from slotbook.db.session import SessionLocal, get_db
from slotbook.logging_utils import (
    _request_id_ctx_var,
    configure_logging,
    get_current_provider,
    set_provider_context,
)
from slotbook.schemas import (
    BlockSlotRequest,
    BookingRequest,
    CancelRequest,
    RescheduleRequest,
    SlotSummary,
)
from slotbook.services import BookingEngine, Failure, FailureKind, Outcome, SqlAlchemyStore
from slotbook.services.errors import NOT_FOUND_CODES

configure_logging()

app = FastAPI(title=settings.app_name, version="0.1.0")

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_COUNTER = Counter(
    "slotbook_api_requests_total",
    "Total number of processed HTTP requests.",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "slotbook_api_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
)
BOOKING_OUTCOMES = Counter(
    "slotbook_booking_outcomes_total",
    "Booking engine results by operation and failure kind.",
    ["operation", "result"],
)

_STATUS_BY_KIND = {
    FailureKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureKind.DOMAIN_RULE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureKind.AVAILABILITY: status.HTTP_409_CONFLICT,
    FailureKind.STATE_CONFLICT: status.HTTP_409_CONFLICT,
    FailureKind.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    FailureKind.CONFIGURATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Populate request context for logging."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        request.state.request_id = request_id
        request_id_token = _request_id_ctx_var.set(request_id)

        try:
            response = await call_next(request)
        finally:
            _request_id_ctx_var.reset(request_id_token)

        response.headers["X-Request-ID"] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Emit structured access logs and feed metrics."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start_time = time.perf_counter()
        path = request.scope.get("root_path", "") + request.scope.get("path", request.url.path)
        method = request.method

        try:
            response = await call_next(request)
        except Exception:
            elapsed = time.perf_counter() - start_time
            REQUEST_COUNTER.labels(method=method, path=path, status="500").inc()
            REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
            logger.exception(
                "request failed",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": round(elapsed * 1000, 2),
                },
            )
            raise

        elapsed = time.perf_counter() - start_time
        status_code = response.status_code

        REQUEST_COUNTER.labels(method=method, path=path, status=str(status_code)).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)

        logger.info(
            "request completed",
            extra={
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(elapsed * 1000, 2),
            },
        )

        return response


app.add_middleware(RequestContextMiddleware)
app.add_middleware(AccessLogMiddleware)


@lru_cache(maxsize=1)
def get_booking_engine() -> BookingEngine:
    """Return the process-wide engine bound to the application session factory."""

    return BookingEngine(SessionLocal, BookingConfig.from_settings(settings))


def status_for(failure: Failure) -> int:
    """Map a failure onto the HTTP status returned to the client."""

    if failure.code in NOT_FOUND_CODES:
        return status.HTTP_404_NOT_FOUND
    return _STATUS_BY_KIND[failure.kind]


def resolve(operation: str, outcome: Outcome[T]) -> T:
    """Return the outcome value or raise the matching ``HTTPException``."""

    failure = outcome.failure
    if failure is None:
        BOOKING_OUTCOMES.labels(operation=operation, result="ok").inc()
        return outcome.value  # type: ignore[return-value]

    BOOKING_OUTCOMES.labels(operation=operation, result=failure.kind.value).inc()
    log = logger.error if failure.kind == FailureKind.CONFIGURATION else logger.info
    log(
        "booking request rejected",
        extra={
            "operation": operation,
            "failure_kind": failure.kind.value,
            "failure_code": failure.code.value,
            "provider": get_current_provider(),
        },
    )
    raise HTTPException(status_code=status_for(failure), detail=failure.as_dict())


@app.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint used by infrastructure probes."""

    return {"status": "ok"}


@app.get("/api/v1/providers/{provider_id}/availability")
def provider_availability(
    provider_id: UUID,
    date: dt.date,
    slot_count: int | None = Query(default=None),
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    """Return every start time where the requested run is free."""

    set_provider_context(provider_id)
    runs = resolve("availability", engine.availability(provider_id, date, slot_count))
    return {
        "provider_id": str(provider_id),
        "date": date.isoformat(),
        "timezone": engine.config.timezone,
        "results": [run.as_dict() for run in runs],
    }


@app.get("/api/v1/providers/{provider_id}/slots")
def provider_slots(
    provider_id: UUID,
    date: dt.date,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """List the generated slots of a provider for one date."""

    set_provider_context(provider_id)
    slots = SqlAlchemyStore(db).list_slots(provider_id, date)
    return {
        "provider_id": str(provider_id),
        "date": date.isoformat(),
        "slots": [SlotSummary.from_model(slot).as_dict() for slot in slots],
    }


@app.put("/api/v1/slots/{slot_id}/block")
def block_slot(
    slot_id: UUID,
    payload: BlockSlotRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    """Take an available slot out of circulation."""

    slot = resolve("block_slot", engine.block_slot(slot_id, payload.reason))
    return {"slot": slot.as_dict()}


@app.put("/api/v1/slots/{slot_id}/unblock")
def unblock_slot(
    slot_id: UUID,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    slot = resolve("unblock_slot", engine.unblock_slot(slot_id))
    return {"slot": slot.as_dict()}


@app.post("/api/v1/appointments", status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: BookingRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    """Book an appointment at the requested start time."""

    set_provider_context(payload.provider_id)
    appointment = resolve("book", engine.book(payload))
    logger.info(
        "appointment booked",
        extra={
            "appointment_id": str(appointment.id),
            "slot_numbers": list(appointment.slot_numbers),
        },
    )
    return {"appointment": appointment.as_dict()}


@app.get("/api/v1/appointments/{appointment_id}")
def get_appointment(
    appointment_id: UUID,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    appointment = resolve("get", engine.get_appointment(appointment_id))
    return {"appointment": appointment.as_dict()}


@app.put("/api/v1/appointments/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: UUID,
    payload: CancelRequest | None = None,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    """Cancel an appointment and release its slots."""

    reason = payload.reason if payload else None
    appointment = resolve("cancel", engine.cancel(appointment_id, reason))
    logger.info("appointment cancelled", extra={"appointment_id": str(appointment.id)})
    return {"appointment": appointment.as_dict()}


@app.put("/api/v1/appointments/{appointment_id}/reschedule")
def reschedule_appointment(
    appointment_id: UUID,
    payload: RescheduleRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    """Move an appointment to a new date and start time."""

    appointment = resolve(
        "reschedule",
        engine.reschedule(
            appointment_id, payload.new_date, payload.new_start_time, payload.reason
        ),
    )
    logger.info(
        "appointment rescheduled",
        extra={
            "appointment_id": str(appointment.id),
            "slot_numbers": list(appointment.slot_numbers),
        },
    )
    return {"appointment": appointment.as_dict()}


@app.put("/api/v1/appointments/{appointment_id}/confirm")
def confirm_appointment(
    appointment_id: UUID,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    appointment = resolve("confirm", engine.confirm(appointment_id))
    return {"appointment": appointment.as_dict()}


@app.put("/api/v1/appointments/{appointment_id}/complete")
def complete_appointment(
    appointment_id: UUID,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    appointment = resolve("complete", engine.complete(appointment_id))
    return {"appointment": appointment.as_dict()}


@app.put("/api/v1/appointments/{appointment_id}/no-show")
def no_show_appointment(
    appointment_id: UUID,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict[str, Any]:
    appointment = resolve("no_show", engine.mark_no_show(appointment_id))
    return {"appointment": appointment.as_dict()}

"""Booking, rescheduling and cancellation with remote-first persistence.

Reads prefer the remote service and fall back to the local store. Mutations
are never created optimistically offline: the remote service must acknowledge
a change before it is written locally, and a failed mutation always raises.
Conflict checks and the write that follows run under a per-(clinic, location)
lock so two bookings for the same room cannot interleave.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Callable, assert_never

from clinic_sync.adapters.remote_client import RemoteClient
from clinic_sync.domain.access import can_manage_appointments
from clinic_sync.domain.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from clinic_sync.domain.models import Appointment, AppointmentStatus, Interval, UserRole
from clinic_sync.domain.outcomes import ApplicationFailure, Success, SyncOutcome, TransportFailure
from clinic_sync.scheduling.conflicts import find_conflicts
from clinic_sync.storage.local_store import LocalStore
from clinic_sync.utils.locks import KeyedLocks
from clinic_sync.utils.logging import get_structured_logger, log_operation_event

RoleProvider = Callable[[], UserRole]

logger = logging.getLogger(__name__)


class SchedulingRepository:
    def __init__(
        self,
        store: LocalStore,
        remote: RemoteClient,
        *,
        role_provider: RoleProvider | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._remote = remote
        self._role_provider = role_provider
        self._locks = locks or KeyedLocks()
        self._events = get_structured_logger()

    # -- reads -----------------------------------------------------------

    def query_day(
        self,
        day: date,
        clinic_filter: str | None = None,
        location_filter: str | None = None,
    ) -> list[Appointment]:
        """Return a day's appointments, remote first, local cache on any remote failure."""
        outcome = self._remote.fetch_day(day, clinic_filter, location_filter)

        if isinstance(outcome, Success):
            appointments = sorted(outcome.payload, key=lambda appointment: appointment.start_time)
            cached = self._store.upsert_appointments(appointments)
            logger.info("Refreshed %s cached appointments for %s", cached, day.isoformat())
            return appointments
        if isinstance(outcome, ApplicationFailure):
            log_operation_event(
                self._events,
                operation="query_day",
                status="fallback",
                message="Remote rejected day query; serving local cache",
                error_code=outcome.code,
                error_message=outcome.message,
            )
        elif isinstance(outcome, TransportFailure):
            log_operation_event(
                self._events,
                operation="query_day",
                status="fallback",
                message="Remote unreachable; serving local cache",
                error_code="TRANSPORT",
                error_message=type(outcome.cause).__name__,
            )
        else:
            assert_never(outcome)
        return self._store.appointments_for_day(day, clinic_filter, location_filter)

    # -- mutations -------------------------------------------------------

    def book(self, appointment: Appointment) -> Appointment:
        self._check_access()
        if appointment.id is not None:
            raise ValueError("A new booking must not carry an id")

        candidate = appointment.with_status(AppointmentStatus.BOOKED)
        with self._locks.hold(candidate.resource_key):
            self._ensure_no_conflicts(candidate, candidate.interval, exclude_id=None, operation="book")

            outcome = self._remote.book(candidate)
            created = self._require_success(outcome, operation="book", appointment=candidate)
            if isinstance(created, Appointment) and created.id is not None:
                candidate = replace(candidate, id=created.id)
            stored = self._store.put_appointment(candidate)

        log_operation_event(
            self._events,
            operation="book",
            status="booked",
            subject=stored.subject_name,
            record_id=stored.id,
            message="Appointment booked",
        )
        return stored

    def reschedule(self, appointment_id: str, new_start: datetime, new_end: datetime) -> Appointment:
        self._check_access()
        interval = Interval(new_start, new_end)
        existing = self._load(appointment_id)

        with self._locks.hold(existing.resource_key):
            existing = self._load(appointment_id)
            self._ensure_booked(existing, action="reschedule")
            self._ensure_no_conflicts(existing, interval, exclude_id=appointment_id, operation="reschedule")

            outcome = self._remote.reschedule(existing.with_interval(interval))
            self._require_success(outcome, operation="reschedule", appointment=existing)
            updated = self._store.update_appointment_interval(appointment_id, interval)

        log_operation_event(
            self._events,
            operation="reschedule",
            status="rescheduled",
            subject=updated.subject_name,
            record_id=appointment_id,
            message="Appointment rescheduled",
        )
        return updated

    def cancel(self, appointment_id: str) -> Appointment:
        self._check_access()
        existing = self._load(appointment_id)

        with self._locks.hold(existing.resource_key):
            existing = self._load(appointment_id)
            self._ensure_booked(existing, action="cancel")

            outcome = self._remote.cancel(appointment_id)
            self._require_success(outcome, operation="cancel", appointment=existing)
            updated = self._store.update_appointment_status(appointment_id, AppointmentStatus.CANCELLED)

        log_operation_event(
            self._events,
            operation="cancel",
            status="cancelled",
            subject=updated.subject_name,
            record_id=appointment_id,
            message="Appointment cancelled",
        )
        return updated

    def complete(self, appointment_id: str) -> Appointment:
        self._check_access()
        existing = self._load(appointment_id)

        with self._locks.hold(existing.resource_key):
            existing = self._load(appointment_id)
            self._ensure_booked(existing, action="complete")

            outcome = self._remote.complete(existing.with_status(AppointmentStatus.COMPLETED))
            self._require_success(outcome, operation="complete", appointment=existing)
            updated = self._store.update_appointment_status(appointment_id, AppointmentStatus.COMPLETED)

        log_operation_event(
            self._events,
            operation="complete",
            status="completed",
            subject=updated.subject_name,
            record_id=appointment_id,
            message="Appointment completed",
        )
        return updated

    # -- helpers ---------------------------------------------------------

    def _check_access(self) -> None:
        if self._role_provider is None:
            return
        role = self._role_provider()
        if not can_manage_appointments(role):
            raise AccessDeniedError(UserRole(role).value)

    def _load(self, appointment_id: str) -> Appointment:
        existing = self._store.get_appointment(appointment_id)
        if existing is None:
            raise NotFoundError(appointment_id)
        return existing

    @staticmethod
    def _ensure_booked(appointment: Appointment, *, action: str) -> None:
        if appointment.status.is_terminal:
            raise InvalidTransitionError(appointment.id or "", appointment.status.value, action)

    def _ensure_no_conflicts(
        self,
        appointment: Appointment,
        interval: Interval,
        *,
        exclude_id: str | None,
        operation: str,
    ) -> None:
        booked = self._store.booked_appointments(appointment.clinic, appointment.location)
        conflicts = find_conflicts(
            interval,
            appointment.clinic,
            appointment.location,
            booked,
            exclude_id=exclude_id,
        )
        if not conflicts:
            return
        log_operation_event(
            self._events,
            operation=operation,
            status="rejected",
            subject=appointment.subject_name,
            record_id=appointment.id,
            message="Appointment conflict detected",
            error_code="CONFLICT",
            error_message=f"{len(conflicts)} overlapping booking(s)",
        )
        raise ConflictError(appointment.clinic, appointment.location, conflicts)

    def _require_success(self, outcome: SyncOutcome, *, operation: str, appointment: Appointment) -> Any:
        if isinstance(outcome, Success):
            return outcome.payload
        if isinstance(outcome, ApplicationFailure):
            log_operation_event(
                self._events,
                operation=operation,
                status="failed",
                subject=appointment.subject_name,
                record_id=appointment.id,
                message="Remote rejected request",
                error_code=outcome.code,
                error_message=outcome.message,
            )
            raise outcome.to_error()
        if isinstance(outcome, TransportFailure):
            log_operation_event(
                self._events,
                operation=operation,
                status="failed",
                subject=appointment.subject_name,
                record_id=appointment.id,
                message="Remote unreachable; nothing written locally",
                error_code="TRANSPORT",
                error_message=type(outcome.cause).__name__,
            )
            raise outcome.to_error() from outcome.cause
        assert_never(outcome)

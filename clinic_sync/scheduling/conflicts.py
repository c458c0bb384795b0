"""Interval-overlap conflict detection for (clinic, location) bookings."""

from __future__ import annotations

from typing import Iterable

from clinic_sync.domain.models import Appointment, AppointmentStatus, Interval


def overlaps(candidate: Interval, existing: Interval) -> bool:
    """Return True when two half-open intervals share any instant.

    Back-to-back intervals (``candidate.start == existing.end``) do not overlap.
    """
    return candidate.start < existing.end and existing.start < candidate.end


def find_conflicts(
    candidate: Interval,
    clinic: str,
    location: str,
    existing: Iterable[Appointment],
    exclude_id: str | None = None,
) -> set[str]:
    """Return ids of BOOKED appointments at (clinic, location) overlapping ``candidate``.

    ``exclude_id`` is skipped so a record being rescheduled never conflicts with itself.
    Records without an id are reported under the empty string.
    """
    conflicts: set[str] = set()
    for appointment in existing:
        if appointment.status is not AppointmentStatus.BOOKED:
            continue
        if appointment.clinic != clinic or appointment.location != location:
            continue
        if exclude_id is not None and appointment.id == exclude_id:
            continue
        if overlaps(candidate, appointment.interval):
            conflicts.add(appointment.id or "")
    return conflicts

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from clinic_sync.domain.models import Appointment, AppointmentStatus, PendingRecord
from clinic_sync.domain.outcomes import Success, SyncOutcome
from clinic_sync.storage.local_store import LocalStore


def at(hour: int, minute: int = 0, day: int = 15) -> datetime:
    return datetime(2026, 1, day, hour, minute, tzinfo=timezone.utc)


def make_appointment(
    start: datetime,
    end: datetime,
    *,
    clinic: str = "ClinicA",
    location: str = "Room1",
    appointment_id: str | None = None,
    status: AppointmentStatus = AppointmentStatus.BOOKED,
    subject_name: str = "Alice Example",
) -> Appointment:
    return Appointment(
        id=appointment_id,
        subject_id="subj-1",
        subject_name=subject_name,
        clinic=clinic,
        location=location,
        start_time=start,
        end_time=end,
        status=status,
    )


def make_reading(subject_id: str = "subj-1", minute: int = 0) -> PendingRecord:
    return PendingRecord(
        subject_id=subject_id,
        captured_at=at(8, minute),
        heart_rate_bpm=72,
        body_temperature_c=36.8,
        blood_glucose_mmol_l=5.4,
    )


class FakeRemote:
    """Stands in for RemoteClient; every call is recorded and answers from a queue or a default."""

    def __init__(self, default: SyncOutcome | None = None) -> None:
        self.default = default or Success(None)
        self.outcomes: dict[str, list[SyncOutcome]] = {}
        self.calls: list[tuple[str, Any]] = []

    def answer(self, action: str, *outcomes: SyncOutcome) -> None:
        self.outcomes.setdefault(action, []).extend(outcomes)

    def _next(self, action: str, argument: Any) -> SyncOutcome:
        self.calls.append((action, argument))
        queued = self.outcomes.get(action)
        if queued:
            return queued.pop(0)
        return self.default

    def actions(self) -> list[str]:
        return [action for action, _ in self.calls]

    def fetch_day(self, day, clinic=None, location=None) -> SyncOutcome:
        return self._next("fetch_day", (day, clinic, location))

    def book(self, appointment: Appointment) -> SyncOutcome:
        return self._next("book", appointment)

    def reschedule(self, appointment: Appointment) -> SyncOutcome:
        return self._next("reschedule", appointment)

    def complete(self, appointment: Appointment) -> SyncOutcome:
        return self._next("complete", appointment)

    def cancel(self, appointment_id: str) -> SyncOutcome:
        return self._next("cancel", appointment_id)

    def upload_pending(self, records) -> SyncOutcome:
        return self._next("upload_pending", list(records))


@pytest.fixture
def store(tmp_path: Path):
    local_store = LocalStore(tmp_path / "state" / "store.json").open()
    yield local_store
    local_store.close()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()

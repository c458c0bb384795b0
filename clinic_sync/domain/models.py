from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any


class AppointmentStatus(str, enum.Enum):
    BOOKED = "BOOKED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"

    @property
    def is_terminal(self) -> bool:
        return self is not AppointmentStatus.BOOKED


class UserRole(str, enum.Enum):
    PATIENT = "PATIENT"
    CLINICIAN = "CLINICIAN"
    RECEPTIONIST = "RECEPTIONIST"
    ADMIN = "ADMIN"


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class Interval:
    """Half-open time range ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.end <= self.start:
            raise ValueError(
                f"Interval end must be after start (start={self.start.isoformat()}, end={self.end.isoformat()})"
            )


@dataclass(slots=True)
class Appointment:
    subject_id: str
    subject_name: str
    clinic: str
    location: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.BOOKED
    notes: str | None = None
    id: str | None = None

    def __post_init__(self) -> None:
        # Raises when end <= start.
        interval = Interval(self.start_time, self.end_time)
        self.start_time = interval.start
        self.end_time = interval.end
        self.status = AppointmentStatus(self.status)

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    @property
    def resource_key(self) -> tuple[str, str]:
        return (self.clinic, self.location)

    def on_day(self, day: date) -> bool:
        return self.start_time.date() == day

    def with_interval(self, interval: Interval) -> Appointment:
        return replace(self, start_time=interval.start, end_time=interval.end)

    def with_status(self, status: AppointmentStatus) -> Appointment:
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "clinic": self.clinic,
            "location": self.location,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status.value,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Appointment:
        raw_id = payload.get("id")
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            subject_id=str(payload["subject_id"]),
            subject_name=str(payload.get("subject_name") or ""),
            clinic=str(payload["clinic"]),
            location=str(payload["location"]),
            start_time=datetime.fromisoformat(str(payload["start_time"])),
            end_time=datetime.fromisoformat(str(payload["end_time"])),
            status=AppointmentStatus(payload.get("status") or AppointmentStatus.BOOKED.value),
            notes=payload.get("notes"),
        )


@dataclass(slots=True)
class PendingRecord:
    """A locally captured vital-sign reading awaiting upload."""

    subject_id: str
    captured_at: datetime
    heart_rate_bpm: int
    body_temperature_c: float
    blood_glucose_mmol_l: float
    synced: bool = False
    id: str | None = None

    def __post_init__(self) -> None:
        self.captured_at = as_utc(self.captured_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "captured_at": self.captured_at.isoformat(),
            "heart_rate_bpm": self.heart_rate_bpm,
            "body_temperature_c": self.body_temperature_c,
            "blood_glucose_mmol_l": self.blood_glucose_mmol_l,
            "synced": self.synced,
        }

    def to_upload_dict(self) -> dict[str, Any]:
        payload = self.to_dict()
        payload.pop("synced")
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PendingRecord:
        raw_id = payload.get("id")
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            subject_id=str(payload["subject_id"]),
            captured_at=datetime.fromisoformat(str(payload["captured_at"])),
            heart_rate_bpm=int(payload["heart_rate_bpm"]),
            body_temperature_c=float(payload["body_temperature_c"]),
            blood_glucose_mmol_l=float(payload["blood_glucose_mmol_l"]),
            synced=bool(payload.get("synced", False)),
        )

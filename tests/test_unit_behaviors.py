from __future__ import annotations

import json
import logging

import pytest

from clinic_sync.domain.access import can_manage_appointments
from clinic_sync.domain.models import Appointment, AppointmentStatus, UserRole
from clinic_sync.utils.logging import JsonFormatter, mask_subject_name, scrub
from conftest import at, make_appointment


def test_subject_name_masking() -> None:
    assert mask_subject_name("") == ""
    assert mask_subject_name("A") == "*"
    assert mask_subject_name("Alice") == "A****"
    assert mask_subject_name("Alice  Example") == "A**** E******"


def test_long_messages_are_truncated() -> None:
    scrubbed = scrub("x" * 500)

    assert len(scrubbed) == 201
    assert scrubbed.endswith("…")


def test_json_formatter_masks_subject_and_keeps_error_fields() -> None:
    record = logging.LogRecord("clinic_sync", logging.WARNING, __file__, 1, "Remote rejected request", None, None)
    record.operation = "book"
    record.subject = "Alice Example"
    record.record_id = "a1"
    record.status = "failed"
    record.error_code = "409"
    record.error_message = "slot taken"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["operation"] == "book"
    assert payload["subject"] == "A**** E******"
    assert payload["error_code"] == "409"
    assert payload["message"] == "Remote rejected request"


@pytest.mark.parametrize(
    ("role", "allowed"),
    [
        (UserRole.PATIENT, False),
        (UserRole.CLINICIAN, True),
        (UserRole.RECEPTIONIST, True),
        (UserRole.ADMIN, True),
    ],
)
def test_appointment_management_roles(role: UserRole, allowed: bool) -> None:
    assert can_manage_appointments(role) is allowed


def test_appointment_requires_end_after_start() -> None:
    with pytest.raises(ValueError):
        make_appointment(at(10), at(9))


def test_appointment_wire_format_round_trip_keeps_status_and_notes() -> None:
    original = make_appointment(at(9), at(9, 30), appointment_id="a1", status=AppointmentStatus.COMPLETED)
    original.notes = "follow-up"

    payload = original.to_dict()

    assert payload["status"] == "COMPLETED"
    assert payload["start_time"] == "2026-01-15T09:00:00+00:00"
    assert Appointment.from_dict(payload) == original

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path

import pytest

from clinic_sync import cli
from clinic_sync.domain.outcomes import Success
from clinic_sync.storage.local_store import LocalStore
from conftest import FakeRemote, at, make_appointment


@pytest.fixture
def runtime(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    store = LocalStore(tmp_path / "store.json")
    remote = FakeRemote()

    @contextmanager
    def fake_open_runtime(config=None):
        store.open()
        try:
            yield store, remote
        finally:
            store.close()

    monkeypatch.setattr(cli, "open_runtime", fake_open_runtime)
    return store, remote


def test_book_then_list_day(runtime, capsys: pytest.CaptureFixture[str]) -> None:
    _store, remote = runtime
    code = cli.main(
        [
            "book",
            "--subject-id",
            "subj-1",
            "--subject-name",
            "Alice Example",
            "--clinic",
            "ClinicA",
            "--location",
            "Room1",
            "--start",
            "2026-01-15T09:00:00",
            "--end",
            "2026-01-15T09:30:00",
        ]
    )
    booked = json.loads(capsys.readouterr().out)

    remote.answer("fetch_day", Success([make_appointment(at(9), at(9, 30), appointment_id=booked["id"])]))
    assert cli.main(["day", "--date", "2026-01-15", "--clinic", "ClinicA"]) == 0
    listed = json.loads(capsys.readouterr().out)

    assert code == 0
    assert booked["status"] == "BOOKED"
    assert [item["id"] for item in listed] == [booked["id"]]


def test_conflicting_booking_exits_non_zero(runtime, capsys: pytest.CaptureFixture[str]) -> None:
    store, _remote = runtime
    with store:
        store.put_appointment(make_appointment(at(9), at(9, 30), appointment_id="a1"))

    code = cli.main(
        [
            "book",
            "--subject-id",
            "subj-2",
            "--subject-name",
            "Bob Example",
            "--clinic",
            "ClinicA",
            "--location",
            "Room1",
            "--start",
            "2026-01-15T09:15:00",
            "--end",
            "2026-01-15T09:45:00",
        ]
    )

    assert code == 1
    assert "conflict" in capsys.readouterr().err


def test_patient_role_cannot_cancel(runtime, capsys: pytest.CaptureFixture[str]) -> None:
    store, remote = runtime
    with store:
        store.put_appointment(make_appointment(at(9), at(9, 30), appointment_id="a1"))

    code = cli.main(["cancel", "a1", "--role", "PATIENT"])

    assert code == 1
    assert remote.calls == []
    assert "PATIENT" in capsys.readouterr().err


def test_record_vitals_queues_unsynced_reading(runtime) -> None:
    store, _remote = runtime

    code = cli.main(
        [
            "record-vitals",
            "--subject-id",
            "subj-1",
            "--heart-rate",
            "71",
            "--temperature",
            "36.6",
            "--glucose",
            "5.1",
            "--captured-at",
            "2026-01-15T08:00:00Z",
        ]
    )

    assert code == 0
    with store:
        pending = store.unsynced_records()
    assert len(pending) == 1
    assert pending[0].heart_rate_bpm == 71


def test_sync_command_reports_result(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    class Result:
        status = "synced"
        attempted = 2
        synced = 2

    monkeypatch.setattr(cli, "sync_pending_records", lambda: Result())

    assert cli.main(["sync"]) == 0
    assert "attempted=2 synced=2" in capsys.readouterr().out


def test_utc_and_naive_times_are_checked_against_each_other(runtime, capsys: pytest.CaptureFixture[str]) -> None:
    def book(start: str, end: str) -> int:
        return cli.main(
            [
                "book",
                "--subject-id",
                "subj-1",
                "--subject-name",
                "Alice Example",
                "--clinic",
                "ClinicA",
                "--location",
                "Room1",
                "--start",
                start,
                "--end",
                end,
            ]
        )

    assert book("2026-01-15T09:00:00Z", "2026-01-15T09:30:00Z") == 0
    assert book("2026-01-15T10:00:00", "2026-01-15T10:30:00") == 0
    assert book("2026-01-15T09:15:00", "2026-01-15T09:45:00") == 1
    assert "conflict" in capsys.readouterr().err

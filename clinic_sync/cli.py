"""Top-level clinic-sync command line interface."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date as Date
from datetime import datetime, timezone
from typing import Sequence

from clinic_sync.domain.errors import ConfigurationError, SchedulingError
from clinic_sync.domain.models import Appointment, PendingRecord, UserRole
from clinic_sync.jobs.tasks import PendingSyncError, open_runtime, sync_pending_records
from clinic_sync.scheduling.repository import SchedulingRepository


def _datetime(value: str) -> datetime:
    normalized = value.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"expected an ISO-8601 datetime (example: 2026-02-13T09:00:00), got {value!r}"
        ) from exc


def _add_role_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--role",
        type=UserRole,
        choices=list(UserRole),
        help="Acting user role; mutations are refused for roles that cannot manage appointments",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clinic-sync", description="Offline-first clinic scheduling CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    day_parser = subparsers.add_parser("day", help="List appointments for a day (remote first, cache fallback)")
    day_parser.add_argument("--date", type=Date.fromisoformat, help="Target date in YYYY-MM-DD format")
    day_parser.add_argument("--clinic", help="Optional clinic filter")
    day_parser.add_argument("--location", help="Optional location filter")
    day_parser.set_defaults(handler=_handle_day)

    book_parser = subparsers.add_parser("book", help="Book a new appointment")
    book_parser.add_argument("--subject-id", required=True)
    book_parser.add_argument("--subject-name", required=True)
    book_parser.add_argument("--clinic", required=True)
    book_parser.add_argument("--location", required=True)
    book_parser.add_argument("--start", type=_datetime, required=True)
    book_parser.add_argument("--end", type=_datetime, required=True)
    book_parser.add_argument("--notes")
    _add_role_argument(book_parser)
    book_parser.set_defaults(handler=_handle_book)

    reschedule_parser = subparsers.add_parser("reschedule", help="Move an appointment to a new interval")
    reschedule_parser.add_argument("appointment_id")
    reschedule_parser.add_argument("--start", type=_datetime, required=True)
    reschedule_parser.add_argument("--end", type=_datetime, required=True)
    _add_role_argument(reschedule_parser)
    reschedule_parser.set_defaults(handler=_handle_reschedule)

    for name, help_text in (("cancel", "Cancel an appointment"), ("complete", "Mark an appointment completed")):
        status_parser = subparsers.add_parser(name, help=help_text)
        status_parser.add_argument("appointment_id")
        _add_role_argument(status_parser)
        status_parser.set_defaults(handler=_handle_status_change)

    vitals_parser = subparsers.add_parser("record-vitals", help="Capture a vital-sign reading for later upload")
    vitals_parser.add_argument("--subject-id", required=True)
    vitals_parser.add_argument("--heart-rate", type=int, required=True, help="Beats per minute")
    vitals_parser.add_argument("--temperature", type=float, required=True, help="Body temperature in Celsius")
    vitals_parser.add_argument("--glucose", type=float, required=True, help="Blood glucose in mmol/L")
    vitals_parser.add_argument("--captured-at", type=_datetime, help="Capture time; defaults to now (UTC)")
    vitals_parser.set_defaults(handler=_handle_record_vitals)

    sync_parser = subparsers.add_parser("sync", help="Upload unsynced readings once")
    sync_parser.set_defaults(handler=_handle_sync)

    return parser


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2))


def _repository(store, remote, args: argparse.Namespace) -> SchedulingRepository:
    role = getattr(args, "role", None)
    role_provider = (lambda: role) if role is not None else None
    return SchedulingRepository(store, remote, role_provider=role_provider)


def _handle_day(args: argparse.Namespace) -> int:
    target_date = args.date or datetime.now(tz=timezone.utc).date()
    with open_runtime() as (store, remote):
        appointments = _repository(store, remote, args).query_day(target_date, args.clinic, args.location)
    _print_json([appointment.to_dict() for appointment in appointments])
    return 0


def _handle_book(args: argparse.Namespace) -> int:
    appointment = Appointment(
        subject_id=args.subject_id,
        subject_name=args.subject_name,
        clinic=args.clinic,
        location=args.location,
        start_time=args.start,
        end_time=args.end,
        notes=args.notes,
    )
    with open_runtime() as (store, remote):
        booked = _repository(store, remote, args).book(appointment)
    _print_json(booked.to_dict())
    return 0


def _handle_reschedule(args: argparse.Namespace) -> int:
    with open_runtime() as (store, remote):
        updated = _repository(store, remote, args).reschedule(args.appointment_id, args.start, args.end)
    _print_json(updated.to_dict())
    return 0


def _handle_status_change(args: argparse.Namespace) -> int:
    with open_runtime() as (store, remote):
        repository = _repository(store, remote, args)
        action = repository.cancel if args.command == "cancel" else repository.complete
        updated = action(args.appointment_id)
    _print_json(updated.to_dict())
    return 0


def _handle_record_vitals(args: argparse.Namespace) -> int:
    record = PendingRecord(
        subject_id=args.subject_id,
        captured_at=args.captured_at or datetime.now(tz=timezone.utc),
        heart_rate_bpm=args.heart_rate,
        body_temperature_c=args.temperature,
        blood_glucose_mmol_l=args.glucose,
    )
    with open_runtime() as (store, _remote):
        stored = store.record_pending(record)
    print(f"Recorded reading {stored.id} (pending upload)")
    return 0


def _handle_sync(_args: argparse.Namespace) -> int:
    result = sync_pending_records()
    print(f"Sync {result.status}: attempted={result.attempted} synced={result.synced}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        return args.handler(args)
    except (SchedulingError, PendingSyncError, ConfigurationError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

"""Durable local cache of appointments and pending vital-sign uploads.

The whole store is one JSON document on disk. Every write replaces the file
atomically, so a record is either fully committed or not written at all, and
every read observes one consistent snapshot of the document.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable

from cryptography.fernet import Fernet, InvalidToken

from clinic_sync.domain.errors import StorageError
from clinic_sync.domain.models import Appointment, AppointmentStatus, Interval, PendingRecord

DEFAULT_STORE_PATH = Path("state/clinic_sync_store.json")
# Ids the store assigns itself; the remote service never issues these.
LOCAL_ID_PREFIX = "local-"

KeyProvider = Callable[[], str | bytes]

logger = logging.getLogger(__name__)


def _empty_document() -> dict[str, dict[str, Any]]:
    return {"appointments": {}, "pending_records": {}}


def _booking_identity(appointment: Appointment) -> tuple[str, str, str, datetime, datetime]:
    return (
        appointment.subject_id,
        appointment.clinic,
        appointment.location,
        appointment.start_time,
        appointment.end_time,
    )


class LocalStore:
    def __init__(
        self,
        path: Path | str = DEFAULT_STORE_PATH,
        *,
        key_provider: KeyProvider | None = None,
    ) -> None:
        self.path = Path(path)
        self._key_provider = key_provider
        self._fernet: Fernet | None = None
        self._lock = threading.RLock()
        self._opened = False

    # -- lifecycle -------------------------------------------------------

    def open(self) -> LocalStore:
        with self._lock:
            if self._opened:
                return self
            if self._key_provider is not None:
                self._fernet = self._build_cipher()
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageError(f"Cannot create store directory {self.path.parent}") from exc
            # Surface an unreadable or undecryptable file now rather than mid-operation.
            self._load()
            self._opened = True
            logger.info("Opened local store at %s (encrypted=%s)", self.path, self._fernet is not None)
            return self

    def close(self) -> None:
        with self._lock:
            self._opened = False
            self._fernet = None

    def __enter__(self) -> LocalStore:
        return self.open()

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _build_cipher(self) -> Fernet:
        assert self._key_provider is not None
        try:
            key = self._key_provider()
        except Exception as exc:
            raise StorageError("Store key provider is unavailable") from exc
        if not key:
            raise StorageError("Store key provider returned an empty key")
        try:
            return Fernet(key)
        except (TypeError, ValueError) as exc:
            raise StorageError("Store key is not a valid Fernet key") from exc

    def _ensure_open(self) -> None:
        if not self._opened:
            raise StorageError("Local store is not open")

    # -- raw document I/O ------------------------------------------------

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return _empty_document()
        try:
            raw = self.path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Cannot read store file {self.path}") from exc
        if self._fernet is not None:
            try:
                raw = self._fernet.decrypt(raw)
            except InvalidToken as exc:
                raise StorageError("Store file cannot be decrypted with the configured key") from exc
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageError(f"Store file {self.path} is corrupt") from exc
        if not isinstance(payload, dict):
            raise StorageError(f"Store file {self.path} has an unexpected shape")
        document = _empty_document()
        for collection in document:
            items = payload.get(collection, {})
            if not isinstance(items, dict):
                raise StorageError(f"Store collection {collection!r} has an unexpected shape")
            document[collection] = items
        return document

    def _save(self, document: dict[str, dict[str, Any]]) -> None:
        data = json.dumps(document, indent=2, sort_keys=True).encode("utf-8")
        if self._fernet is not None:
            data = self._fernet.encrypt(data)
        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "wb",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Cannot write store file {self.path}") from exc

    def _appointments(self, document: dict[str, dict[str, Any]]) -> list[Appointment]:
        try:
            return [Appointment.from_dict(item) for item in document["appointments"].values()]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError("Stored appointment record is invalid") from exc

    def _pending(self, document: dict[str, dict[str, Any]]) -> list[PendingRecord]:
        try:
            return [PendingRecord.from_dict(item) for item in document["pending_records"].values()]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError("Stored pending record is invalid") from exc

    # -- appointments ----------------------------------------------------

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        with self._lock:
            self._ensure_open()
            item = self._load()["appointments"].get(appointment_id)
        if item is None:
            return None
        try:
            return Appointment.from_dict(item)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Stored appointment {appointment_id!r} is invalid") from exc

    def put_appointment(self, appointment: Appointment) -> Appointment:
        """Insert or replace one appointment; assigns a local id when it has none."""
        stored = appointment
        if stored.id is None:
            stored = replace(appointment, id=f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}")
        with self._lock:
            self._ensure_open()
            document = self._load()
            document["appointments"][stored.id] = stored.to_dict()
            self._save(document)
        return stored

    def upsert_appointments(self, appointments: Iterable[Appointment]) -> int:
        """Write a batch of server-identified appointments in one atomic update.

        A locally identified row describing the same booking as an incoming
        server row (same subject, clinic, location and interval) is replaced by
        it, so a booking acknowledged without an id is not cached twice.
        """
        items = [appointment for appointment in appointments if appointment.id is not None]
        if not items:
            return 0
        with self._lock:
            self._ensure_open()
            document = self._load()
            incoming = {_booking_identity(appointment) for appointment in items}
            for stored_id, item in list(document["appointments"].items()):
                if not stored_id.startswith(LOCAL_ID_PREFIX):
                    continue
                try:
                    identity = _booking_identity(Appointment.from_dict(item))
                except (KeyError, TypeError, ValueError) as exc:
                    raise StorageError(f"Stored appointment {stored_id!r} is invalid") from exc
                if identity in incoming:
                    del document["appointments"][stored_id]
            for appointment in items:
                document["appointments"][appointment.id] = appointment.to_dict()
            self._save(document)
        return len(items)

    def update_appointment_interval(self, appointment_id: str, interval: Interval) -> Appointment:
        with self._lock:
            self._ensure_open()
            document = self._load()
            current = self._require(document, appointment_id)
            updated = current.with_interval(interval)
            document["appointments"][appointment_id] = updated.to_dict()
            self._save(document)
        return updated

    def update_appointment_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        with self._lock:
            self._ensure_open()
            document = self._load()
            current = self._require(document, appointment_id)
            updated = current.with_status(status)
            document["appointments"][appointment_id] = updated.to_dict()
            self._save(document)
        return updated

    def _require(self, document: dict[str, dict[str, Any]], appointment_id: str) -> Appointment:
        item = document["appointments"].get(appointment_id)
        if item is None:
            raise StorageError(f"Appointment {appointment_id!r} is missing from the local store")
        try:
            return Appointment.from_dict(item)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Stored appointment {appointment_id!r} is invalid") from exc

    def appointments_for_day(
        self,
        day: date,
        clinic: str | None = None,
        location: str | None = None,
    ) -> list[Appointment]:
        with self._lock:
            self._ensure_open()
            appointments = self._appointments(self._load())
        matching = [
            appointment
            for appointment in appointments
            if appointment.on_day(day)
            and (clinic is None or appointment.clinic == clinic)
            and (location is None or appointment.location == location)
        ]
        return sorted(matching, key=lambda appointment: appointment.start_time)

    def booked_appointments(self, clinic: str, location: str) -> list[Appointment]:
        with self._lock:
            self._ensure_open()
            appointments = self._appointments(self._load())
        return [
            appointment
            for appointment in appointments
            if appointment.clinic == clinic
            and appointment.location == location
            and appointment.status is AppointmentStatus.BOOKED
        ]

    # -- pending records -------------------------------------------------

    def record_pending(self, record: PendingRecord) -> PendingRecord:
        """Store a newly captured reading as unsynced."""
        stored = replace(record, id=record.id or uuid.uuid4().hex, synced=False)
        with self._lock:
            self._ensure_open()
            document = self._load()
            if stored.id in document["pending_records"]:
                raise StorageError(f"Pending record {stored.id!r} already exists")
            document["pending_records"][stored.id] = stored.to_dict()
            self._save(document)
        return stored

    def unsynced_records(self) -> list[PendingRecord]:
        with self._lock:
            self._ensure_open()
            records = self._pending(self._load())
        return sorted(
            (record for record in records if not record.synced),
            key=lambda record: record.captured_at,
        )

    def mark_synced(self, record_ids: Iterable[str]) -> int:
        """Flip ``synced`` to True for all given ids in one atomic update.

        Unknown ids are ignored. Already-synced records stay synced.
        """
        wanted = set(record_ids)
        with self._lock:
            self._ensure_open()
            document = self._load()
            changed = 0
            for record_id in wanted:
                item = document["pending_records"].get(record_id)
                if item is None or item.get("synced"):
                    continue
                item["synced"] = True
                changed += 1
            if changed:
                self._save(document)
        return changed

    def pending_records_for_subject(
        self,
        subject_id: str,
        *,
        page_index: int = 0,
        page_size: int = 20,
    ) -> list[PendingRecord]:
        """Return one page of a subject's readings, newest first."""
        if page_index < 0 or page_size <= 0:
            raise ValueError("page_index must be >= 0 and page_size must be > 0")
        with self._lock:
            self._ensure_open()
            records = self._pending(self._load())
        history = sorted(
            (record for record in records if record.subject_id == subject_id),
            key=lambda record: record.captured_at,
            reverse=True,
        )
        offset = page_index * page_size
        return history[offset : offset + page_size]

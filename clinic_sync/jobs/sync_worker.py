"""One drain run of the pending-record upload queue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import assert_never

from clinic_sync.adapters.remote_client import RemoteClient
from clinic_sync.domain.outcomes import ApplicationFailure, Success, TransportFailure
from clinic_sync.storage.local_store import LocalStore
from clinic_sync.utils.logging import get_structured_logger, log_operation_event

STATUS_NOOP = "noop"
STATUS_SYNCED = "synced"
STATUS_RETRY = "retry"


@dataclass(slots=True)
class SyncRunResult:
    status: str
    attempted: int = 0
    synced: int = 0
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status != STATUS_RETRY


class PendingRecordSyncWorker:
    """Upload every unsynced reading in one batch and mark them synced on success.

    Re-sending a batch after a crash between upload and mark-synced is safe:
    the remote side deduplicates by record id. Failures leave local state
    untouched and are retried at the next scheduled run.
    """

    def __init__(self, store: LocalStore, remote: RemoteClient) -> None:
        self._store = store
        self._remote = remote
        self._events = get_structured_logger()

    def run(self) -> SyncRunResult:
        unsynced = self._store.unsynced_records()
        if not unsynced:
            log_operation_event(
                self._events,
                operation="pending_sync",
                status=STATUS_NOOP,
                message="No records to sync",
            )
            return SyncRunResult(status=STATUS_NOOP)

        record_ids = [record.id for record in unsynced if record.id is not None]
        outcome = self._remote.upload_pending(unsynced)

        if isinstance(outcome, Success):
            marked = self._store.mark_synced(record_ids)
            log_operation_event(
                self._events,
                operation="pending_sync",
                status=STATUS_SYNCED,
                message=f"Uploaded {len(unsynced)} records; marked {marked} synced",
            )
            return SyncRunResult(status=STATUS_SYNCED, attempted=len(unsynced), synced=marked)

        if isinstance(outcome, ApplicationFailure):
            error_code, error_message = outcome.code, outcome.message
        elif isinstance(outcome, TransportFailure):
            error_code, error_message = "TRANSPORT", type(outcome.cause).__name__
        else:
            assert_never(outcome)

        log_operation_event(
            self._events,
            operation="pending_sync",
            status=STATUS_RETRY,
            message=f"Upload of {len(unsynced)} records failed; retrying next run",
            error_code=error_code,
            error_message=error_message,
        )
        return SyncRunResult(
            status=STATUS_RETRY,
            attempted=len(unsynced),
            error_code=error_code,
            error_message=error_message,
        )

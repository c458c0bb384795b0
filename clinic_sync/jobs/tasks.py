"""Task functions executed by the scheduler."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from clinic_sync.adapters.remote_client import RemoteClient
from clinic_sync.config import RuntimeConfig, bearer_header_supplier, resolve_config
from clinic_sync.jobs.sync_worker import PendingRecordSyncWorker, SyncRunResult
from clinic_sync.storage.local_store import LocalStore

logger = logging.getLogger(__name__)


class PendingSyncError(RuntimeError):
    """Raised when a sync run must be retried at the next scheduled run."""


def build_store(config: RuntimeConfig) -> LocalStore:
    key_provider = (lambda: config.store_key) if config.store_key else None
    return LocalStore(config.store_path, key_provider=key_provider)


def build_remote_client(config: RuntimeConfig) -> RemoteClient:
    return RemoteClient(
        config.api_base_url,
        auth_header_supplier=bearer_header_supplier(config),
        timeout_s=config.timeout_s,
        allow_insecure=config.allow_insecure,
    )


@contextmanager
def open_runtime(config: RuntimeConfig | None = None) -> Iterator[tuple[LocalStore, RemoteClient]]:
    """Open the local store and remote client for one unit of work, closing both afterwards."""
    config = config or resolve_config()
    store = build_store(config).open()
    try:
        with build_remote_client(config) as remote:
            yield store, remote
    finally:
        store.close()


def sync_pending_records(*, config: RuntimeConfig | None = None) -> SyncRunResult:
    """Drain the pending-record queue once; raise so the scheduler records a failed run."""
    with open_runtime(config) as (store, remote):
        result = PendingRecordSyncWorker(store, remote).run()

    logger.info(
        "Pending sync finished: status=%s attempted=%s synced=%s",
        result.status,
        result.attempted,
        result.synced,
    )
    if not result.succeeded:
        raise PendingSyncError(
            f"Pending record upload failed ({result.error_code}): {result.error_message}"
        )
    return result

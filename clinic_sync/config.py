"""Environment-driven runtime configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from clinic_sync.adapters.remote_client import DEFAULT_BASE_URL
from clinic_sync.domain.errors import ConfigurationError
from clinic_sync.storage.local_store import DEFAULT_STORE_PATH

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeConfig:
    api_base_url: str
    api_token: str | None
    store_path: Path
    store_key: str | None
    timeout_s: float
    interval_minutes: int
    timezone: str
    allow_insecure: bool


def _number(name: str, default: str, cast: type) -> float | int:
    raw = os.getenv(name, default)
    try:
        value = cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def resolve_config() -> RuntimeConfig:
    config = RuntimeConfig(
        api_base_url=os.getenv("CLINIC_SYNC_API_BASE_URL", DEFAULT_BASE_URL),
        api_token=os.getenv("CLINIC_SYNC_API_TOKEN") or None,
        store_path=Path(os.getenv("CLINIC_SYNC_STORE_PATH", str(DEFAULT_STORE_PATH))),
        store_key=os.getenv("CLINIC_SYNC_STORE_KEY") or None,
        timeout_s=_number("CLINIC_SYNC_TIMEOUT_SECONDS", "10", float),
        interval_minutes=_number("CLINIC_SYNC_INTERVAL_MINUTES", "30", int),
        timezone=os.getenv("CLINIC_SYNC_TIMEZONE", "UTC"),
        allow_insecure=os.getenv("CLINIC_SYNC_ALLOW_INSECURE", "").strip() == "1",
    )
    logger.info(
        "Resolved runtime config (api=%s, store=%s, encrypted=%s, interval_minutes=%s)",
        config.api_base_url,
        config.store_path,
        config.store_key is not None,
        config.interval_minutes,
    )
    return config


def bearer_header_supplier(config: RuntimeConfig):
    """Return an auth header supplier that fails loudly when no token is configured."""

    def _supply() -> str:
        if not config.api_token:
            raise ConfigurationError("CLINIC_SYNC_API_TOKEN is required for remote calls.")
        return f"Bearer {config.api_token}"

    return _supply

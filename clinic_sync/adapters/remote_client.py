from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Callable, Iterable

import httpx

from clinic_sync.domain.errors import ConfigurationError
from clinic_sync.domain.models import Appointment, PendingRecord
from clinic_sync.domain.outcomes import ApplicationFailure, Success, SyncOutcome, TransportFailure

DEFAULT_BASE_URL = "https://example-mock-api.test/"

AuthHeaderSupplier = Callable[[], str]

logger = logging.getLogger(__name__)


class RemoteClient:
    """HTTP adapter for the remote scheduling service.

    Every call resolves to a ``SyncOutcome``: ``Success`` for any 2xx answer,
    ``ApplicationFailure`` when the service answered with a rejection, and
    ``TransportFailure`` when no definitive answer arrived (timeouts included).
    Only idempotent calls are retried, and only on transport failures.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        auth_header_supplier: AuthHeaderSupplier | None = None,
        timeout_s: float = 10.0,
        retry_attempts: int = 3,
        retry_delay_s: float = 0.6,
        allow_insecure: bool = False,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not allow_insecure and not base_url.lower().startswith("https://"):
            raise ConfigurationError(f"Remote base URL must use https: {base_url!r}")
        if retry_attempts < 1:
            raise ConfigurationError("retry_attempts must be at least 1")
        self.base_url = base_url
        self.retry_attempts = retry_attempts
        self.retry_delay_s = retry_delay_s
        self._auth_header_supplier = auth_header_supplier
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_s),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RemoteClient:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _auth_headers(self) -> dict[str, str]:
        if self._auth_header_supplier is None:
            return {}
        try:
            value = self._auth_header_supplier()
        except Exception as exc:
            raise ConfigurationError("Authentication header supplier is unavailable") from exc
        if not value:
            raise ConfigurationError("Authentication header supplier returned an empty value")
        return {"Authorization": value}

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.reason_phrase or response.text[:200]
        if isinstance(body, dict):
            for key in ("detail", "message", "error"):
                if body.get(key):
                    return str(body[key])
        return response.reason_phrase or ""

    def _request(self, action: str, method: str, path: str, *, idempotent: bool, **kwargs: Any) -> SyncOutcome:
        headers = self._auth_headers()
        attempts = self.retry_attempts if idempotent else 1
        for attempt in range(1, attempts + 1):
            try:
                response = self._client.request(method, path, headers=headers, **kwargs)
            except httpx.RequestError as exc:
                logger.warning(
                    "Transport failure on %s (attempt %s/%s): %s",
                    action,
                    attempt,
                    attempts,
                    type(exc).__name__,
                )
                if attempt == attempts:
                    return TransportFailure(exc)
                time.sleep(self.retry_delay_s)
                continue

            if not response.is_success:
                logger.info("Remote rejected %s with status %s", action, response.status_code)
                return ApplicationFailure(str(response.status_code), self._detail(response))

            if not response.content:
                return Success(None)
            try:
                return Success(response.json())
            except ValueError:
                return ApplicationFailure("invalid_response", f"Undecodable body for {action}")
        raise RuntimeError(f"Unreachable retry state for action={action}")

    @staticmethod
    def _parse_appointment(outcome: SyncOutcome, action: str) -> SyncOutcome:
        if not isinstance(outcome, Success) or not isinstance(outcome.payload, dict):
            return outcome
        try:
            return Success(Appointment.from_dict(outcome.payload))
        except (KeyError, TypeError, ValueError):
            return ApplicationFailure("invalid_response", f"Malformed appointment in {action} response")

    def fetch_day(self, day: date, clinic: str | None = None, location: str | None = None) -> SyncOutcome:
        params = {"date": day.isoformat()}
        if clinic is not None:
            params["clinic"] = clinic
        if location is not None:
            params["location"] = location

        outcome = self._request("fetch_day", "GET", "appointments/day", idempotent=True, params=params)
        if not isinstance(outcome, Success):
            return outcome
        if not isinstance(outcome.payload, list):
            return ApplicationFailure("invalid_response", "Day query did not return a list")
        try:
            return Success([Appointment.from_dict(item) for item in outcome.payload])
        except (KeyError, TypeError, ValueError):
            return ApplicationFailure("invalid_response", "Malformed appointment in day query response")

    def book(self, appointment: Appointment) -> SyncOutcome:
        """POST a new appointment; a returned body is parsed into the created ``Appointment``."""
        outcome = self._request(
            "book",
            "POST",
            "appointments",
            idempotent=False,
            json=appointment.to_dict(),
        )
        return self._parse_appointment(outcome, "book")

    def reschedule(self, appointment: Appointment) -> SyncOutcome:
        return self._put(appointment, "reschedule")

    def complete(self, appointment: Appointment) -> SyncOutcome:
        return self._put(appointment, "complete")

    def _put(self, appointment: Appointment, action: str) -> SyncOutcome:
        if appointment.id is None:
            raise ValueError(f"Cannot {action} an appointment without an id")
        outcome = self._request(
            action,
            "PUT",
            f"appointments/{appointment.id}",
            idempotent=False,
            json=appointment.to_dict(),
        )
        return self._parse_appointment(outcome, action)

    def cancel(self, appointment_id: str) -> SyncOutcome:
        return self._request("cancel", "DELETE", f"appointments/{appointment_id}", idempotent=False)

    def upload_pending(self, records: Iterable[PendingRecord]) -> SyncOutcome:
        """Bulk upload readings; the service deduplicates by record id."""
        body = {"records": [record.to_upload_dict() for record in records]}
        return self._request("upload_pending", "POST", "pending-records/bulk", idempotent=True, json=body)

from __future__ import annotations

import json
from datetime import date

import httpx
import pytest

from clinic_sync.adapters.remote_client import RemoteClient
from clinic_sync.domain.errors import ConfigurationError
from clinic_sync.domain.models import Appointment
from clinic_sync.domain.outcomes import ApplicationFailure, Success, TransportFailure
from conftest import at, make_appointment, make_reading

BASE_URL = "https://api.clinic.test/v1/"


def _client(handler, **kwargs) -> RemoteClient:
    kwargs.setdefault("retry_delay_s", 0)
    return RemoteClient(
        BASE_URL,
        auth_header_supplier=lambda: "Bearer token-123",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_fetch_day_parses_appointments_and_sends_filters() -> None:
    seen: list[httpx.Request] = []
    remote_item = make_appointment(at(9), at(9, 30), appointment_id="srv-1").to_dict()

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[remote_item])

    outcome = _client(handler).fetch_day(date(2026, 1, 15), "ClinicA", "Room1")

    assert isinstance(outcome, Success)
    assert [item.id for item in outcome.payload] == ["srv-1"]
    request = seen[0]
    assert request.url.path == "/v1/appointments/day"
    assert request.url.params["date"] == "2026-01-15"
    assert request.url.params["clinic"] == "ClinicA"
    assert request.headers["Authorization"] == "Bearer token-123"


def test_non_2xx_is_application_failure_with_detail() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"detail": "slot taken"})

    outcome = _client(handler).book(make_appointment(at(9), at(9, 30)))

    assert outcome == ApplicationFailure("409", "slot taken")


def test_book_returns_created_appointment_with_server_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["id"] is None
        return httpx.Response(201, json={**body, "id": 42})

    outcome = _client(handler).book(make_appointment(at(9), at(9, 30)))

    assert isinstance(outcome, Success)
    assert isinstance(outcome.payload, Appointment)
    assert outcome.payload.id == "42"


def test_timeout_is_transport_failure_and_writes_are_not_retried() -> None:
    attempts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.method)
        raise httpx.ReadTimeout("timed out", request=request)

    outcome = _client(handler).cancel("a1")

    assert isinstance(outcome, TransportFailure)
    assert isinstance(outcome.cause, httpx.TimeoutException)
    assert attempts == ["DELETE"]


def test_idempotent_calls_retry_transport_failures() -> None:
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, json={"accepted": 1})

    outcome = _client(handler, retry_attempts=3).upload_pending([make_reading()])

    assert outcome == Success({"accepted": 1})
    assert len(attempts) == 3


def test_bulk_upload_carries_record_ids_for_deduplication() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    reading = make_reading()
    reading.id = "rec-1"
    outcome = _client(handler).upload_pending([reading])

    assert outcome == Success(None)
    assert bodies[0]["records"][0]["id"] == "rec-1"
    assert "synced" not in bodies[0]["records"][0]


def test_undecodable_success_body_is_application_failure() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>maintenance</html>")

    outcome = _client(handler).fetch_day(date(2026, 1, 15))

    assert isinstance(outcome, ApplicationFailure)
    assert outcome.code == "invalid_response"


def test_plain_http_is_refused_unless_allowed() -> None:
    with pytest.raises(ConfigurationError, match="https"):
        RemoteClient("http://api.clinic.test/")

    RemoteClient("http://localhost:8000/", allow_insecure=True).close()


def test_missing_credentials_fail_before_any_request() -> None:
    calls: list[int] = []

    def handler(_request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(200, json=[])

    def no_token() -> str:
        raise ConfigurationError("CLINIC_SYNC_API_TOKEN is required for remote calls.")

    client = RemoteClient(BASE_URL, auth_header_supplier=no_token, transport=httpx.MockTransport(handler))

    with pytest.raises(ConfigurationError):
        client.fetch_day(date(2026, 1, 15))
    assert calls == []

from __future__ import annotations

from collections.abc import Iterable


class SchedulingError(RuntimeError):
    """Base class for failures surfaced by scheduling and sync operations."""

    retryable = False


class ConflictError(SchedulingError):
    def __init__(self, clinic: str, location: str, conflicting_ids: Iterable[str]) -> None:
        self.clinic = clinic
        self.location = location
        self.conflicting_ids = frozenset(conflicting_ids)
        super().__init__(
            f"Appointment conflict at {clinic}/{location} with {sorted(self.conflicting_ids)}"
        )


class NotFoundError(SchedulingError):
    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Appointment {record_id!r} not found")


class InvalidTransitionError(SchedulingError):
    def __init__(self, record_id: str, status: str, action: str) -> None:
        self.record_id = record_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} appointment {record_id!r} in status {status}")


class AccessDeniedError(SchedulingError):
    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"Role {role} cannot manage appointments")


class ApplicationError(SchedulingError):
    """The remote service rejected the request."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"Remote rejected request ({code}): {message}")


class TransportError(SchedulingError):
    """No definitive answer from the remote service."""

    retryable = True

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Network error, please try again later ({type(cause).__name__}: {cause})")


class StorageError(SchedulingError):
    """Local persistence failed."""


class ConfigurationError(ValueError):
    """Raised when mandatory runtime configuration is missing or invalid."""

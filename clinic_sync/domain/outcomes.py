"""Result of a remote call: success, a decided rejection, or no definitive answer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from clinic_sync.domain.errors import ApplicationError, TransportError


@dataclass(frozen=True, slots=True)
class Success:
    payload: Any = None


@dataclass(frozen=True, slots=True)
class ApplicationFailure:
    """The service answered and rejected the request."""

    code: str
    message: str

    def to_error(self) -> ApplicationError:
        return ApplicationError(self.code, self.message)


@dataclass(frozen=True, slots=True)
class TransportFailure:
    """The request never got a definitive answer."""

    cause: BaseException

    def to_error(self) -> TransportError:
        return TransportError(self.cause)


SyncOutcome = Union[Success, ApplicationFailure, TransportFailure]

"""Exception types shared across the monitor."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class AcquisitionFailure(str, Enum):
    BLOCKED = "blocked"
    TIMEOUT = "timeout"
    PARSE_FAILURE = "parse_failure"
    INVALID_COUNT = "invalid_count"


class AcquisitionError(Exception):
    """Raised when a fresh count cannot be obtained for an entity.

    ``TIMEOUT`` also covers navigation failures and non-2xx API responses,
    i.e. any case where the source could not be reached.
    """

    def __init__(
        self,
        reason: AcquisitionFailure,
        message: Optional[str] = None,
        *,
        url: Optional[str] = None,
    ) -> None:
        self.reason = reason
        self.url = url
        self.message = message or reason.value.replace("_", " ")
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.message} (url={self.url})" if self.url else self.message


class NotFoundError(LookupError):
    """Raised when a category or subscription does not exist."""


class PersistenceError(Exception):
    """Raised when a state file cannot be read or written."""


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are missing."""


class DeliveryError(Exception):
    """Raised when a chat message could not be delivered."""


__all__ = [
    "AcquisitionFailure",
    "AcquisitionError",
    "NotFoundError",
    "PersistenceError",
    "ConfigurationError",
    "DeliveryError",
]

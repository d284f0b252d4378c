"""
Failure description — structured error information for the failure track.

An ErrorCode classifies what went wrong; FailureDescription carries the code,
a human message, the optional originating exception and a UTC timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Optional


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    Input problems (VALIDATION, DECODE) are per-item and usually
    recoverable; CONFIGURATION failures are fatal to a run.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Malformed input: bad URL, empty body, unusable feed value."""

    DECODE_ERROR = "DECODE_ERROR"
    """Bytes could not be decoded into the expected structure."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration: trust store, feed schema, rule filter."""

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """Remote server answered with an error or the transport failed."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    """Operation exceeded its time limit."""

    STORAGE_ERROR = "STORAGE_ERROR"
    """Local filesystem read/write failure."""

    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected failure inside an execution context."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor.

    >>> desc = FailureDescription(ErrorCode.DECODE_ERROR, "not a CRL")
    >>> desc.code
    <ErrorCode.DECODE_ERROR: 'DECODE_ERROR'>
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def cause(self) -> str:
        """Message with the originating exception appended, for log lines."""
        if self.exception is None:
            return self.message
        return f"{self.message}: {type(self.exception).__name__}: {self.exception}"


"""
Railway-Oriented Programming (ROP) framework.

Explicit, composable error handling for the adapters and pipeline stages:

    from railway import Result, ErrorCode

    def require_https(url: str) -> Result[str]:
        if not url.startswith("https://"):
            return Result.failure(ErrorCode.VALIDATION_ERROR, "https required")
        return Result.success(url)
"""

from railway.assertions import ResultAssertions
from railway.execution import (
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
)
from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultAssertions",
]

__version__ = "1.1.0"

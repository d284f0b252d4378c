"""
pytest helpers for Result values.

    outcome = ResultAssertions.assert_success(fetcher.fetch(url, dest))
    ResultAssertions.assert_failure(linter.lint(b"junk"), ErrorCode.DECODE_ERROR)
"""

from __future__ import annotations

from typing import TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")


def _suffix(message: str) -> str:
    return f" ({message})" if message else ""


class ResultAssertions:
    """Assertions whose messages show the other track's payload."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Fail unless ``result`` is a Success; return the unwrapped value."""
        if result.is_failure():
            error = result.error()
            raise AssertionError(
                f"Expected Success but got Failure({error.code.value}: {error.cause!r})"
                + _suffix(message)
            )
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Fail unless ``result`` is a Failure, with ``expected_code`` when given."""
        if result.is_success():
            raise AssertionError(
                f"Expected Failure but got Success({result.value()!r})" + _suffix(message)
            )
        error = result.error()
        if expected_code is not None and error.code != expected_code:
            raise AssertionError(
                f"Expected error code {expected_code.value} but got "
                f"{error.code.value}: {error.message!r}" + _suffix(message)
            )
        return error

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> None:
        message = ResultAssertions.assert_failure(result).message
        if substring.lower() not in message.lower():
            raise AssertionError(
                f"Expected failure message to contain {substring!r} but message was: "
                f"{message!r}"
            )

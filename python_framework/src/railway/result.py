"""
Result type for the fetch, validate and lint stages.

A Result[T] sits on one of two tracks: Success carries the value, Failure
carries a FailureDescription. Adapters hand back a Result instead of raising,
and stages are joined with .flat_map(), which stops at the first Failure:

    load trust store ──ok──▶ walk cache ──ok──▶ RunStatistics
          │                      │
          └──────── Failure ─────┴────────────▶ Failure
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from railway.failure import ErrorCode, FailureDescription

T = TypeVar("T")
U = TypeVar("U")


class Result(Generic[T]):
    """
    Base of Success and Failure; construct through the static factories.

        >>> Result.success(b"0").map(len).value()
        1
        >>> Result.failure(ErrorCode.DECODE_ERROR, "not DER").map(len).is_failure()
        True
    """

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def __bool__(self) -> bool:
        return self.is_success()

    def value(self) -> T:
        """The wrapped value; ValueError when called on a Failure."""
        if isinstance(self, Success):
            return self._value
        raise ValueError(f"Failure has no value: {self.error().message}")

    def error(self) -> FailureDescription:
        """The failure description; ValueError when called on a Success."""
        if isinstance(self, Failure):
            return self._error
        raise ValueError(f"Success has no error: {self.value()!r}")

    def get_or_else(self, default: T) -> T:
        return self.value() if self.is_success() else default

    # ── chaining ──

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        match self:
            case Success(v):
                return Success(mapper(v))
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """
        Feed the value into the next Result-returning stage.

            reader.read().flat_map(lambda records: fetch_all(plan(records)))
        """
        match self:
            case Success(v):
                return mapper(v)
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map_failure(
        self, mapper: Callable[[FailureDescription], FailureDescription]
    ) -> Result[T]:
        """Rewrite the failure, e.g. to add the URL to a transport error."""
        if isinstance(self, Failure):
            return Failure(mapper(self._error))
        return self

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        """Call ``action`` with the value for its side effect only."""
        if isinstance(self, Success):
            action(self._value)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        if isinstance(self, Failure):
            action(self._error)
        return self

    # ── factories ──

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
    ) -> Result[T]:
        """
        Build a Failure in one call.

            Result.failure(ErrorCode.TIMEOUT_ERROR, f"GET {url} timed out", exc)
        """
        return Failure(FailureDescription(code=code, message=message, exception=exception))

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """
        Run ``computation`` and put any Exception it raises on the failure track.

            Result.from_computation(
                path.read_bytes, ErrorCode.STORAGE_ERROR, f"cannot read {path}"
            )
        """
        try:
            return Result.success(computation())
        except Exception as e:
            return Result.failure(error_code, error_message, e)


@dataclass(frozen=True, slots=True)
class Success(Result[T]):
    """Value track. None is not a value."""

    _value: T

    def __init__(self, value: T) -> None:
        if value is None:
            raise TypeError("Success value must not be None")
        object.__setattr__(self, "_value", value)

    def __repr__(self) -> str:
        return f"Success({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Success):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash((Success, self._value))


Success.__match_args__ = ("_value",)


@dataclass(frozen=True, slots=True)
class Failure(Result[T]):
    """Error track. Equality ignores the exception and timestamp."""

    _error: FailureDescription

    def __init__(self, error: FailureDescription) -> None:
        if error is None:
            raise TypeError("Failure error must not be None")
        object.__setattr__(self, "_error", error)

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Failure):
            return (self._error.code, self._error.message) == (
                other._error.code,
                other._error.message,
            )
        return NotImplemented

    def __hash__(self) -> int:
        return hash((Failure, self._error.code, self._error.message))


Failure.__match_args__ = ("_error",)

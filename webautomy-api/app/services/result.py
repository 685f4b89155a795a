from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from app.services.errors import RelayError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a background step whose failure is logged rather than raised."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @staticmethod
    def from_error(exc: RelayError) -> "Result[T]":
        return Result(ok=False, error=exc.message, error_code=exc.code)

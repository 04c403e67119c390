from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from mira.errors import MiraError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
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
    def from_error(exc: MiraError) -> "Result[T]":
        """Failure carrying the user-facing text of a pipeline error."""
        return Result(ok=False, error=exc.user_message or str(exc), error_code=exc.code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

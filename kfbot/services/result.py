from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from kfbot.services.errors import KfBotError

T = TypeVar("T")

# Error codes for reply outcomes
SEND_ERROR = "send_error"
UNKNOWN_ERROR = "unknown"


@dataclass
class Result(Generic[T]):
    """Outcome of a reply attempt. ``value`` names the channel that was used."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = UNKNOWN_ERROR) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @staticmethod
    def from_error(exc: KfBotError, code: str = UNKNOWN_ERROR) -> "Result[T]":
        return Result.failure(exc.message, code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

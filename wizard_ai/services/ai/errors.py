"""
Error taxonomy for remote AI calls.

Every failure of the remote path is turned into a ClassifiedError carrying
its kind plus whether another attempt might succeed and whether the caller
should fall back. Only ConfigurationError ever reaches application code.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Classified failure kinds."""

    INVALID_API_KEY = "INVALID_API_KEY"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    RATE_LIMIT = "RATE_LIMIT"
    API_ERROR = "API_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    QUEUE_FULL = "QUEUE_FULL"


class ClassifiedError(Exception):
    """A remote-path failure with retry and fallback hints."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retryable: bool = False,
        should_fallback: bool = True,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.retryable = retryable
        self.should_fallback = should_fallback
        self.status_code = status_code

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value}, "
            f"retryable={self.retryable}, message={str(self)!r})"
        )


class ConfigurationError(ClassifiedError):
    """Misconfiguration that no fallback can paper over."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.INVALID_API_KEY):
        super().__init__(kind, message, retryable=False, should_fallback=False)


@dataclass
class RemoteCallResult(Generic[T]):
    """
    Outcome of one logical remote call (all attempts included).

    Exactly one of `value` / `error` is set.
    """

    value: Optional[T] = None
    error: Optional[ClassifiedError] = None
    model: str = ""
    tokens_used: int = 0
    cost_usd: float = 0.0
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

"""
Classified errors shared by the fetch client, collectors, enrichment and storage,
plus a small Result container used instead of exception-driven retry loops.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class PipelineError(Exception):
    """Base class for all classified pipeline errors."""

    retryable: bool = False

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class NetworkError(PipelineError):
    """Transport failure, timeout or unexpected HTTP status."""

    retryable = True


class RateLimitError(NetworkError):
    """Upstream answered 429 or otherwise asked us to slow down."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, retryable=True)
        self.retry_after = retry_after


class NotFoundError(PipelineError):
    """Upstream resource does not exist (e.g. an unknown tag)."""


class ParseError(PipelineError):
    """Malformed upstream payload or unusable LLM reply."""


class QuotaExceededError(PipelineError):
    """Generative-text quota is exhausted for the remainder of the run."""


class StorageError(PipelineError):
    """A storage operation failed."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a classified error."""

    value: Optional[T] = None
    error: Optional[PipelineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PipelineError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value

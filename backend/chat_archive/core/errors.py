"""Exception taxonomy shared by remote, storage, and job layers."""

from __future__ import annotations

from typing import Literal

RemoteErrorKind = Literal["rate_limited", "auth_expired", "transient_network", "other"]


class ArchiveError(RuntimeError):
    """Base class for every error raised by Chat Archive."""


class RemoteError(ArchiveError):
    """Raised when the remote messaging API rejects or fails a call."""

    kind: RemoteErrorKind = "other"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class RateLimitedError(RemoteError):
    """Platform-imposed wait period. Never retried automatically."""

    kind: RemoteErrorKind = "rate_limited"

    def __init__(self, wait_seconds: int, message: str | None = None, code: str | None = "FLOOD_WAIT") -> None:
        super().__init__(message or f"Rate limited, retry after {wait_seconds}s", code=code)
        self.wait_seconds = int(wait_seconds)


class AuthExpiredError(RemoteError):
    """Session is no longer authorized; fatal for the running job."""

    kind: RemoteErrorKind = "auth_expired"


class TransientNetworkError(RemoteError):
    """Network blip or upstream 5xx; safe to retry."""

    kind: RemoteErrorKind = "transient_network"


class TakeoutError(ArchiveError):
    """Failure while opening, using, or finishing a takeout session."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class TakeoutInitDelayError(TakeoutError):
    """The platform refuses a new takeout session until a delay elapses."""

    def __init__(self, wait_seconds: int, message: str | None = None) -> None:
        super().__init__(message or f"Takeout session unavailable for {wait_seconds}s")
        self.wait_seconds = int(wait_seconds)


class EmbeddingError(ArchiveError):
    """Raised when the embedding provider fails or returns malformed data."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class StorageError(ArchiveError):
    """Raised when the persistence layer is unavailable or rejects a write."""


def is_retryable(exc: BaseException) -> bool:
    """Default retry predicate: only transient failures are retried."""
    if isinstance(exc, TransientNetworkError):
        return True
    if isinstance(exc, (TakeoutError, EmbeddingError)):
        return exc.retryable
    return False


def is_fatal(exc: BaseException) -> bool:
    """Errors that must terminate a job without retry."""
    return isinstance(exc, (AuthExpiredError, TakeoutError, StorageError))


__all__ = [
    "ArchiveError",
    "RemoteError",
    "RemoteErrorKind",
    "RateLimitedError",
    "AuthExpiredError",
    "TransientNetworkError",
    "TakeoutError",
    "TakeoutInitDelayError",
    "EmbeddingError",
    "StorageError",
    "is_retryable",
    "is_fatal",
]

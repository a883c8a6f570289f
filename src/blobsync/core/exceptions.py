"""
Custom exceptions for blobsync.

This module defines a hierarchy of exceptions for the sync core, providing
structured error handling with context preservation. Callers can tell
retryable causes (network) from fatal ones (truncation, integrity mismatch)
by exception class or by the ``retryable`` attribute.

Exception Hierarchy:
    BlobsyncError (base)
    ├── RemoteError (remote API failures)
    │   ├── NotFoundError (bad owner/repo/path/ref)
    │   ├── BadReferenceError (ref the remote refused to resolve)
    │   ├── RateLimitedError (call budget exhausted or 403)
    │   └── TruncatedError (incomplete remote listing)
    ├── NetworkUnavailableError (connectivity/API health failure)
    ├── DownloadError (staging download exhausted its retries)
    ├── IntegrityMismatchError (hash or existence check failed)
    └── PublishError (disk/permission failure while publishing)

Example:
    >>> from blobsync.core.exceptions import RateLimitedError
    >>> try:
    ...     raise RateLimitedError("API budget exhausted", remaining=0)
    ... except RateLimitedError as e:
    ...     print(f"{e} (retryable={e.retryable})")
    ...     print(f"Context: {e.context}")
"""


class BlobsyncError(Exception):
    """
    Base exception for all blobsync errors.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary of additional context
        retryable: Whether retrying later may succeed
    """

    retryable = False

    def __init__(self, message: str, **context: object) -> None:
        """
        Initialize an error with message and context.

        Args:
            message: Human-readable error message
            **context: Additional context as keyword arguments
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


class RemoteError(BlobsyncError):
    """
    Base exception for remote API errors.

    Carries the HTTP status code (when there was a response) and the URL
    that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str | None = None,
        **context: object,
    ) -> None:
        super().__init__(message, status_code=status_code, url=url, **context)
        self.status_code = status_code
        self.url = url


class NotFoundError(RemoteError):
    """Raised when an owner, repository, path or ref does not exist."""


class BadReferenceError(RemoteError):
    """Raised when the remote rejects the requested ref for a path lookup."""


class RateLimitedError(RemoteError):
    """
    Raised when the remote call budget is exhausted.

    Also used by the budget gate when a batch would need more calls than
    remain. ``reset_at`` is the budget reset time when the remote reported it.
    """

    retryable = True

    def __init__(self, message: str, *, reset_at: object = None, **context: object) -> None:
        super().__init__(message, reset_at=reset_at, **context)
        self.reset_at = reset_at


class TruncatedError(RemoteError):
    """
    Raised when the remote reports a truncated tree listing.

    A truncated listing is never turned into partial data.
    """


class NetworkUnavailableError(BlobsyncError):
    """
    Raised when connectivity or the API health check fails.

    The original transport exception is preserved via ``__cause__``.
    """

    retryable = True


class DownloadError(BlobsyncError):
    """Raised when a staging download exhausts its retries."""

    retryable = True

    def __init__(self, message: str, *, url: str | None = None, **context: object) -> None:
        super().__init__(message, url=url, **context)
        self.url = url


class IntegrityMismatchError(BlobsyncError):
    """Raised when staged or local content does not match its listing."""


class PublishError(BlobsyncError):
    """
    Raised when publishing fails after a complete rollback.

    The final directory is back in its pre-call state when this is raised.
    """


__all__ = [
    "BlobsyncError",
    "RemoteError",
    "NotFoundError",
    "BadReferenceError",
    "RateLimitedError",
    "TruncatedError",
    "NetworkUnavailableError",
    "DownloadError",
    "IntegrityMismatchError",
    "PublishError",
]

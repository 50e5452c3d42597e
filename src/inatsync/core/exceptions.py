"""
Custom exceptions for the sync engine.

Defines a hierarchy of exceptions with context preservation, so callers can
tell transport failures apart from protocol violations and local cache
damage.

Exception Hierarchy:
    SyncError (base)
    ├── TransportError (network-level failures)
    ├── ProtocolError (headers, content type, envelope)
    │   ├── StatusError (non-success HTTP status)
    │   ├── ContentTypeError (unexpected media type)
    │   ├── ResponseError (error envelope despite 2xx)
    │   └── MalformedEntityError (payload object without usable id)
    ├── CacheCorruptionError (broken cache files)
    └── ConcurrencyError (task join failures)

Example:
    >>> from inatsync.core.exceptions import StatusError
    >>> try:
    ...     raise StatusError(404, "Not found", url="/users/nobody")
    ... except StatusError as e:
    ...     print(e)
    ...     print(e.status_code)
    bad status: 404; Not found
    404
"""

from pathlib import Path


class SyncError(Exception):
    """
    Base exception for all sync errors.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary of additional context
    """

    def __init__(self, message: str, **context: object) -> None:
        """
        Initialize a sync error with message and context.

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


class TransportError(SyncError):
    """
    Exception for network-level failures.

    Raised when the HTTP exchange itself fails (connection refused, timeout,
    protocol violation below HTTP). The original httpx exception is kept as
    ``__cause__``.
    """


class ProtocolError(SyncError):
    """
    Exception for responses that violate the API contract.

    Covers missing or malformed headers, malformed envelopes and pages that
    break the pagination rules.
    """


class StatusError(ProtocolError):
    """
    Exception for a non-success HTTP status.

    Attributes:
        status_code: HTTP status returned by the server
        server_message: Error message embedded in the response body
    """

    def __init__(self, status_code: int, server_message: str, **context: object) -> None:
        """
        Initialize a status error.

        Args:
            status_code: HTTP status returned by the server
            server_message: Error text extracted from the body (may be empty)
            **context: Additional context (url, etc.)
        """
        super().__init__(
            f"bad status: {status_code}; {server_message}",
            status_code=status_code,
            **context,
        )
        self.status_code = status_code
        self.server_message = server_message


class ContentTypeError(ProtocolError):
    """Exception for a response whose Content-Type is not JSON."""

    def __init__(self, content_type: str, **context: object) -> None:
        super().__init__(f"bad content type: {content_type}", **context)
        self.content_type = content_type


class ResponseError(ProtocolError):
    """Exception for an error envelope delivered with a success status."""

    def __init__(self, error: str, status: int | None = None, **context: object) -> None:
        message = f"response error: {error}"
        if status is not None:
            message = f"response error ({status}): {error}"
        super().__init__(message, **context)
        self.error = error
        self.status = status


class MalformedEntityError(ProtocolError):
    """
    Exception for payload objects that cannot be normalized.

    Raised when an embedded object lacks a numeric id, or when a field that
    should hold objects holds something else.
    """


class CacheCorruptionError(SyncError):
    """
    Exception for cache files that cannot be trusted.

    Raised when a cache file is missing its header or data document, or when
    required fields are absent. Never handled by rebuilding the file, so data
    loss is not masked.

    Attributes:
        path: Path of the corrupt cache file
    """

    def __init__(self, path: Path, reason: str, **context: object) -> None:
        """
        Initialize a cache corruption error.

        Args:
            path: Path of the corrupt cache file
            reason: What is wrong with it
            **context: Additional context
        """
        super().__init__(f"corrupt cache {path}: {reason}", path=str(path), **context)
        self.path = path
        self.reason = reason


class ConcurrencyError(SyncError):
    """Exception for a worker task that failed outside its reporting path."""


__all__ = [
    "SyncError",
    "TransportError",
    "ProtocolError",
    "StatusError",
    "ContentTypeError",
    "ResponseError",
    "MalformedEntityError",
    "CacheCorruptionError",
    "ConcurrencyError",
]

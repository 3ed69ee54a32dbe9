"""
arcrepo.core.exceptions - Custom Exception Hierarchy
======================================================

Structured exceptions raised by the repository client, the artifact cache
enabler and the paging iterator. Each carries a human-readable message, a
machine-readable error code and a free-form ``details`` dict.

Exception Hierarchy:
    RepositoryError (base)
        ├── InvalidArgumentError      - Missing/empty required parameter
        ├── NoSuchArtifactError       - 404 on an identity-addressed request
        ├── RepositoryProtocolError   - Malformed or unexpected response
        ├── RepositoryTransportError  - Network failure below HTTP
        ├── RepositoryHttpError       - Any other non-2xx response
        ├── IteratorTimeoutError      - Consumer waited too long for a page
        ├── IteratorStateError        - Iterator used after it failed/closed
        ├── ArtifactStateError        - Single-use content stream reused
        ├── ConfigurationError        - Invalid client configuration
        └── MessageBusError           - Pub/sub channel failures

Propagation Rules:
    - The client never retries. Everything except a 404 on an
      identity-addressed call propagates unchanged.
    - The artifact cache never raises; its failures degrade to a miss.
    - Malformed invalidation messages are logged and dropped, never raised.

Usage:
    >>> from arcrepo.core.exceptions import NoSuchArtifactError
    >>> raise NoSuchArtifactError(
    ...     message="Artifact not found",
    ...     namespace="ns1",
    ...     uuid="8c0e...",
    ... )
"""

from __future__ import annotations

from typing import Any, Optional


# =============================================================================
# Base Exception
# =============================================================================
# Catch every arcrepo failure with a single clause:
#
#   try:
#       data = await client.get_artifact_data(artifact)
#   except RepositoryError as e:
#       logger.error(e.message, error_code=e.error_code, details=e.details)
# =============================================================================
class RepositoryError(Exception):
    """Base exception for all arcrepo errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable code in UPPER_SNAKE_CASE
            (e.g., "NO_SUCH_ARTIFACT", "ITERATOR_TIMEOUT").
        details: Additional debugging context (endpoint, status, uuid...).
    """

    def __init__(
        self,
        message: str,
        error_code: str = "REPOSITORY_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception for structured logging.

        Returns:
            Dictionary with error_type, message, error_code, and details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Caller Errors
# =============================================================================
class InvalidArgumentError(RepositoryError, ValueError):
    """Raised before any network call when a required parameter is missing.

    Also a ``ValueError`` so generic argument validation handlers catch it.

    Example:
        >>> raise InvalidArgumentError(
        ...     message="Namespace is required",
        ...     argument="namespace",
        ... )
    """

    def __init__(
        self,
        message: str,
        argument: Optional[str] = None,
        error_code: str = "INVALID_ARGUMENT",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if argument:
            enriched_details["argument"] = argument

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.argument = argument


class NoSuchArtifactError(RepositoryError):
    """Raised when the repository answers 404 for a specific artifact.

    An empty listing is not an error; this is only raised for requests that
    address one artifact by (namespace, uuid).

    Attributes:
        namespace: Namespace of the missing artifact.
        uuid: UUID of the missing artifact.
    """

    def __init__(
        self,
        message: str,
        namespace: Optional[str] = None,
        uuid: Optional[str] = None,
        error_code: str = "NO_SUCH_ARTIFACT",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["namespace"] = namespace
        enriched_details["uuid"] = uuid

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.namespace = namespace
        self.uuid = uuid


# =============================================================================
# Remote Errors
# =============================================================================
class RepositoryProtocolError(RepositoryError):
    """Raised when a response cannot be decoded.

    Common Causes:
        - Bad multipart framing or a missing required part
        - Framed HTTP response with no header terminator
        - Body that is not the JSON document the endpoint promises
    """

    def __init__(
        self,
        message: str,
        error_code: str = "PROTOCOL_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class RepositoryTransportError(RepositoryError):
    """Raised when the HTTP transport fails (connect, read, timeout).

    The underlying ``httpx`` exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "TRANSPORT_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class RepositoryHttpError(RepositoryError):
    """Raised for a non-2xx response that has no more specific meaning.

    Attributes:
        status_code: HTTP status returned by the repository.
        reason: Server message (JSON ``message`` field or reason phrase).
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        reason: Optional[str] = None,
        error_code: str = "HTTP_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["status_code"] = status_code
        if reason:
            enriched_details["reason"] = reason

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.status_code = status_code
        self.reason = reason


# =============================================================================
# Iterator Errors
# =============================================================================
class IteratorTimeoutError(RepositoryError, TimeoutError):
    """Raised when the consumer waited past the queue-get timeout.

    Also a ``TimeoutError`` so generic timeout handlers catch it.

    Treated as a hard failure: the iterator is closed and later calls raise
    ``IteratorStateError``.
    """

    def __init__(
        self,
        message: str,
        timeout_seconds: float,
        error_code: str = "ITERATOR_TIMEOUT",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["timeout_seconds"] = timeout_seconds

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.timeout_seconds = timeout_seconds


class IteratorStateError(RepositoryError):
    """Raised when an iterator is used after it has failed."""

    def __init__(
        self,
        message: str,
        error_code: str = "ITERATOR_STATE_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class ArtifactStateError(RepositoryError):
    """Raised when a single-use ArtifactData content stream is requested twice."""

    def __init__(
        self,
        message: str,
        error_code: str = "ARTIFACT_STATE_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Infrastructure Errors
# =============================================================================
class ConfigurationError(RepositoryError):
    """Raised when the client configuration is invalid or unreadable."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class MessageBusError(RepositoryError):
    """Raised when the pub/sub channel cannot connect, publish or subscribe.

    The cache enabler catches these and retries with backoff; they never
    reach callers of the repository client.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "MESSAGE_BUS_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)

"""
Error taxonomy for gc_provider.

- ValidationError: bad desired state, fatal, never retried.
- ApiError: HTTP/transport failure with status, url and body.
- RetryableError: signal raised inside a retry loop ("try again").
- RetryTimeoutError: the retry window closed (typed deadline-exceeded).
- ConsistencyError: read-back never converged with what was written.

Remote failures surfaced to the user are wrapped with the resource name and a
short summary via :func:`build_api_error`.
"""
from __future__ import annotations

from typing import Optional


class ProviderError(Exception):
    """Base class for every error raised by gc_provider."""

    def __init__(self, message: str, *, resource_name: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.resource_name = resource_name

    def __str__(self) -> str:
        if self.resource_name:
            return f"{self.resource_name}: {self.message}"
        return self.message


class ConfigError(ProviderError):
    """Raised when provider settings or the desired document are invalid."""


class ValidationError(ProviderError):
    """Raised when desired attributes violate a schema rule."""


class ApiError(ProviderError):
    """HTTP/transport error with context.

    ``status`` is 0 for network-level failures (connect, read timeout).
    """

    def __init__(
        self,
        status: int,
        method: str,
        url: str,
        body: str = "",
        *,
        correlation_id: str = "",
        message: str = "",
    ) -> None:
        self.status = int(status)
        self.method = method
        self.url = url
        self.body = body
        self.correlation_id = correlation_id
        text = f"API Error: {self.status} - {method} {url}"
        if message:
            text += f": {message}"
        if body:
            text += f" body={body[:200]}"
        super().__init__(text)

    @property
    def not_found(self) -> bool:
        return self.status == 404

    @property
    def retryable(self) -> bool:
        """404 (propagation delay), 429 and 5xx are worth another attempt."""
        return self.status in (0, 404, 429) or 500 <= self.status < 600


class ResourceApiError(ProviderError):
    """A remote failure wrapped with the resource name and a summary."""

    def __init__(self, resource_name: str, summary: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(summary, resource_name=resource_name)
        self.cause = cause

    @property
    def status(self) -> int:
        return self.cause.status if isinstance(self.cause, ApiError) else 0

    @property
    def not_found(self) -> bool:
        return self.status == 404


class RetryableError(ProviderError):
    """Raised by a retried operation to ask for another attempt."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


class RetryTimeoutError(ProviderError):
    """The retry window closed before the operation succeeded.

    ``last_error`` is the last retryable failure seen, or None when no attempt
    produced an outcome before the deadline (the state never stabilised).
    """

    def __init__(self, timeout: float, attempts: int, last_error: Optional[BaseException] = None) -> None:
        self.timeout = timeout
        self.attempts = attempts
        self.last_error = last_error
        if last_error is None:
            text = f"timeout while waiting for state to become 'success' (timeout: {timeout:g}s)"
        else:
            text = f"timed out after {timeout:g}s and {attempts} attempt(s): {last_error}"
        super().__init__(text)

    @property
    def stalled(self) -> bool:
        return self.last_error is None


class ConsistencyError(ProviderError):
    """Read-back state kept differing from the written state."""


def build_api_error(resource_name: str, summary: str, error: BaseException) -> ResourceApiError:
    """Wrap a remote failure with the resource name and a readable summary."""
    detail = str(error)
    text = f"{summary} | error: {detail}" if detail else summary
    return ResourceApiError(resource_name, text, cause=error)


def is_not_found(error: Optional[BaseException]) -> bool:
    """True when *error* (or the error it wraps) is an HTTP 404."""
    seen = 0
    while error is not None and seen < 5:
        if isinstance(error, (ApiError, ResourceApiError)) and error.not_found:
            return True
        error = getattr(error, "error", None) or getattr(error, "cause", None)
        seen += 1
    return False

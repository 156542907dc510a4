"""
Error taxonomy for pulsarview.

Every failure raised by the admin gateway, the cluster registry and the
messaging sessions derives from :class:`PulsarViewError`. HTTP failures are
classified by status code so that callers can tell a permission problem
(401/403) apart from everything else and choose a degraded-but-functional
path instead of a hard failure.
"""

from __future__ import annotations

from enum import Enum


class PulsarViewError(Exception):
    """Base exception for pulsarview errors."""

    pass


class RequestTimeoutError(PulsarViewError, TimeoutError):
    """Raised when an admin request exceeds its wall-clock bound."""

    def __init__(self, method: str, url: str, timeout: float) -> None:
        super().__init__(f"Request timeout after {timeout:g}s: {method} {url}")
        self.method = method
        self.url = url
        self.timeout = timeout


class NetworkError(PulsarViewError):
    """Raised when the admin endpoint cannot be reached at all."""

    pass


class HttpError(PulsarViewError):
    """Raised for any non-2xx admin response."""

    def __init__(self, status_code: int, body: str = "", url: str = "") -> None:
        super().__init__(f"HTTP {status_code}: {body or 'Unknown error'}")
        self.status_code = status_code
        self.body = body
        self.url = url


class AuthenticationError(HttpError):
    """HTTP 401: credentials missing, invalid or expired."""

    pass


class AuthorizationError(HttpError):
    """HTTP 403: credentials valid but lacking permission."""

    pass


class NotFoundError(PulsarViewError, LookupError):
    """Raised when a cluster or resource is unknown."""

    pass


class ResourceNotFoundError(HttpError, NotFoundError):
    """HTTP 404 from the admin surface."""

    pass


class ClusterAlreadyExistsError(PulsarViewError):
    """Raised when adding a cluster whose name is already registered or being added."""

    pass


class NotConnectedError(PulsarViewError):
    """Raised when a session operation is attempted outside the OPEN state."""

    pass


class TransportError(PulsarViewError):
    """Raised when a streaming connection fails."""

    pass


class ParseError(PulsarViewError, ValueError):
    """Malformed address or payload. Always recovered locally."""

    pass


def http_error_for(status_code: int, body: str = "", url: str = "") -> HttpError:
    """Build the most specific HttpError subclass for a status code."""
    match status_code:
        case 401:
            return AuthenticationError(status_code, body, url)
        case 403:
            return AuthorizationError(status_code, body, url)
        case 404:
            return ResourceNotFoundError(status_code, body, url)
        case _:
            return HttpError(status_code, body, url)


def is_permission_error(error: BaseException) -> bool:
    """True for 401/403-classified failures."""
    return isinstance(error, AuthenticationError | AuthorizationError)


class FailureCategory(Enum):
    """How a presentation layer should react to a failure."""

    CREDENTIALS = "credentials"
    NETWORK = "network"
    OTHER = "other"


def classify_failure(error: BaseException) -> FailureCategory:
    """Map an error to the remediation the user should be offered.

    Permission failures prompt for credentials, transport and network
    failures offer a retry, everything else shows the raw message.
    """
    if is_permission_error(error):
        return FailureCategory.CREDENTIALS
    if isinstance(error, NetworkError | TransportError | RequestTimeoutError):
        return FailureCategory.NETWORK
    if isinstance(error, ConnectionError | TimeoutError):
        return FailureCategory.NETWORK
    return FailureCategory.OTHER

"""Error taxonomy shared by every layer of the session library.

Every public operation raises one of the classes below (or a subclass).
Transport and protocol errors from httpx and pydantic are wrapped so that
callers only ever need to handle :class:`OpenStackError`.
"""

from typing import Any

import httpx


class OpenStackError(Exception):
    """Base class for all errors raised by openstack_session."""


class AuthenticationFailed(OpenStackError):
    """Raised when the identity service rejects the credentials or token."""

    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(detail)
        self.detail = detail


class AuthenticationRejected(AuthenticationFailed):
    """Raised when a service answers 401/403 to an authenticated request.

    The session catches it once to refresh the token and retry; a second
    rejection reaches the caller as an :class:`AuthenticationFailed`.
    """

    def __init__(
        self,
        status_code: int,
        service_type: str = "",
        path: str = "",
        message: str | None = None,
    ):
        detail = f"Request rejected with HTTP {status_code}"
        if service_type:
            detail += f" by {service_type}"
        if path:
            detail += f" ({path})"
        if message:
            detail += f": {message}"
        super().__init__(detail)
        self.status_code = status_code
        self.service_type = service_type
        self.path = path


class EndpointNotFound(OpenStackError):
    """Raised when the catalog has no endpoint for a service type."""

    def __init__(
        self,
        service_type: str,
        interfaces: tuple[str, ...] = (),
        region: str | None = None,
    ):
        msg = f"No endpoint found for service type {service_type!r}"
        if interfaces:
            msg += f" with interface(s) {', '.join(interfaces)}"
        if region:
            msg += f" in region {region!r}"
        super().__init__(msg)
        self.service_type = service_type
        self.interfaces = interfaces
        self.region = region


class UnsupportedVersion(OpenStackError):
    """Raised when the requested API version is outside the supported range."""

    def __init__(self, service_type: str, requested: Any, available_range: Any):
        msg = (
            f"API version {requested} is not supported by "
            f"{service_type or 'the service'} (available: {available_range})"
        )
        super().__init__(msg)
        self.service_type = service_type
        self.requested = requested
        self.available_range = available_range


class HttpError(OpenStackError):
    """Raised for non-success HTTP responses not covered by other kinds.

    ``message`` is set when the body is a recognizable OpenStack error
    document; ``body`` always keeps the raw response text for diagnostics.
    """

    def __init__(
        self,
        status_code: int,
        message: str | None = None,
        body: str | None = None,
        service_type: str = "",
        method: str = "",
        url: str = "",
    ):
        text = f"HTTP {status_code}"
        if method and url:
            text += f" from {method} {url}"
        if service_type:
            text += f" ({service_type})"
        if message:
            text += f": {message}"
        super().__init__(text)
        self.status_code = status_code
        self.message = message
        self.body = body
        self.service_type = service_type
        self.method = method
        self.url = url


class ResourceNotFound(HttpError):
    """Raised when a service answers 404."""

    def __init__(self, message: str | None = None, body: str | None = None, **kwargs):
        super().__init__(404, message=message, body=body, **kwargs)


class TransportError(OpenStackError):
    """Raised for connection, DNS, timeout and redirect failures.

    ``cause`` is the underlying httpx exception; ``is_timeout`` tells a
    timeout apart from a refused or failed connection.
    """

    def __init__(
        self,
        cause: BaseException,
        service_type: str = "",
        url: str = "",
    ):
        kind = "timed out" if _is_timeout(cause) else "failed"
        msg = f"Request to {url or 'service'} {kind}: {cause!r}"
        if service_type:
            msg = f"{service_type}: {msg}"
        super().__init__(msg)
        self.cause = cause
        self.service_type = service_type
        self.url = url

    @property
    def is_timeout(self) -> bool:
        """Whether the failure was a timeout rather than a connection error."""
        return _is_timeout(self.cause)


class ProtocolMismatch(OpenStackError):
    """Raised when a response does not match the expected JSON structure."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidInput(OpenStackError, ValueError):
    """Raised when caller-supplied input is malformed."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


def _is_timeout(cause: BaseException) -> bool:
    return isinstance(cause, httpx.TimeoutException | TimeoutError)

"""HTTP request pipeline for OpenStack service calls.

Builds a single request carrying the bearer token and microversion
headers, sends it with a thread-local httpx client and maps the response
onto the error taxonomy. The pipeline performs no retries; the session
applies its single refresh-and-retry on authentication rejection.
"""

import json
import threading
import time
import weakref
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .apiversion import ApiVersion, version_headers
from .errors import (
    AuthenticationRejected,
    HttpError,
    ProtocolMismatch,
    ResourceNotFound,
    TransportError,
)

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 30.0

AUTH_HEADER = "X-Auth-Token"

_REJECTION_STATUSES = (401, 403)


class RequestSpec(BaseModel):
    """Description of one service call relative to a service endpoint.

    ``path`` may also be an absolute URL (e.g. a pagination link), in which
    case it is used unchanged.
    """

    model_config = ConfigDict(frozen=True)

    service_type: str
    path: str = ""
    method: str = "GET"
    params: dict[str, Any] = Field(default_factory=dict)
    json_body: Any = None
    headers: dict[str, str] = Field(default_factory=dict)
    api_version: ApiVersion | None = None
    interface: str | None = None
    timeout: float | None = None
    extra_success: tuple[int, ...] = ()

    @field_validator("api_version", mode="before")
    @classmethod
    def _parse_version(cls, value: Any) -> Any:
        if value is None or isinstance(value, ApiVersion):
            return value
        return ApiVersion.parse(value)


class ApiResponse(BaseModel):
    """Decoded response of a successful call.

    ``body`` is None for empty responses.
    """

    model_config = ConfigDict(frozen=True)

    status_code: int
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    duration_seconds: float = 0.0


def join_url(endpoint: str, path: str) -> str:
    """Join an endpoint URL and a relative path.

    Absolute URLs in ``path`` are returned unchanged.
    """
    if path.startswith(("http://", "https://")):
        return path
    if not path:
        return endpoint
    return f"{endpoint.rstrip('/')}/{path.lstrip('/')}"


def extract_error_message(body: Any) -> str | None:
    """Pull a human-readable message out of an OpenStack error document.

    Recognizes the Nova fault wrapper (``{"itemNotFound": {"message": ..}}``),
    Keystone (``{"error": {"message": ..}}``), Neutron
    (``{"NeutronError": {"message": ..}}``), API-SIG
    (``{"errors": [{"detail": ..}]}``), Glance/Ironic style
    ``{"title": .., "description": ..}`` and ``{"error_message": ..}``.

    Returns:
        The message, or None if the body is not a recognizable error.
    """
    if not isinstance(body, dict):
        return None

    if errors := body.get("errors"):
        if isinstance(errors, list):
            details = [
                str(error.get("detail") or error.get("title") or error)
                for error in errors
                if isinstance(error, dict)
            ]
            if details:
                return "; ".join(details)

    if error_message := body.get("error_message"):
        if isinstance(error_message, str):
            try:
                decoded = json.loads(error_message)
            except ValueError:
                return error_message
            if isinstance(decoded, dict):
                return str(decoded.get("faultstring") or error_message)
            return error_message
        return extract_error_message(error_message)

    if "description" in body or "title" in body:
        return str(body.get("description") or body.get("title"))

    if "message" in body and isinstance(body["message"], str):
        return body["message"]

    # Single-key fault wrappers: {"badRequest": {...}}, {"error": {...}}
    if len(body) == 1:
        (inner,) = body.values()
        if isinstance(inner, dict) and isinstance(inner.get("message"), str):
            return inner["message"]

    return None


def _decode_body(response: httpx.Response) -> Any:
    if not response.content or response.status_code == 204:  # noqa: PLR2004
        return None
    try:
        return response.json()
    except ValueError as exc:
        msg = (
            f"Expected a JSON body from {response.request.method} "
            f"{response.request.url}, got {response.headers.get('content-type')!r}"
        )
        raise ProtocolMismatch(msg) from exc


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    raw = response.text
    try:
        decoded = response.json()
    except ValueError:
        return None, raw
    return extract_error_message(decoded), raw


class RequestPipeline:
    """Sends requests to OpenStack services and interprets the responses.

    Thread-safe through thread-local storage of httpx.Client instances.
    Can be used as a context manager for automatic cleanup.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool | str = True,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the pipeline.

        Args:
            timeout: Default request timeout in seconds.
            verify: TLS verification flag or path to a CA bundle.
            transport: Optional httpx transport (e.g., a MockTransport in tests).

        Raises:
            ValueError: If timeout is not positive.
        """
        if timeout <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)

        self._timeout = timeout
        self._verify = verify
        self._transport = transport
        self._headers = {
            "Accept": "application/json",
        }

        # Use thread-local storage for httpx.Client (thread safety)
        self._local = threading.local()
        # Every client created by any thread, so close() can reach them all
        self._clients: weakref.WeakSet[httpx.Client] = weakref.WeakSet()
        self._clients_lock = threading.Lock()

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def client(self) -> httpx.Client:
        """Get or create the thread-local httpx client."""
        if not hasattr(self._local, "client") or self._local.client.is_closed:
            client = httpx.Client(
                headers=self._headers,
                timeout=self._timeout,
                verify=self._verify,
                transport=self._transport,
            )
            with self._clients_lock:
                self._clients.add(client)
            self._local.client = client
        return self._local.client

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager and cleanup resources."""
        self.close()

    def close(self):
        """Close the HTTP clients of every thread that used the pipeline.

        A thread sending after close() gets a fresh client.
        """
        with self._clients_lock:
            clients = list(self._clients)
            self._clients.clear()
        for client in clients:
            if not client.is_closed:
                client.close()

    def send_raw(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        service_type: str = "",
    ) -> httpx.Response:
        """Send a request and return the raw response without status checks.

        Raises:
            TransportError: On connection, DNS, timeout or redirect failures.
            ProtocolMismatch: If the body cannot be decoded with its declared
                content encoding.
        """
        start_time = time.time()
        logger.debug(
            "Making API request",
            method=method,
            url=url,
            service_type=service_type,
            params=params or {},
        )
        try:
            response = self.client.request(
                method,
                url,
                params=params or None,
                json=json_body,
                headers=headers,
                timeout=timeout if timeout is not None else self._timeout,
            )
        except httpx.RequestError as exc:
            logger.warning(
                "API request failed",
                method=method,
                url=url,
                service_type=service_type,
                error=repr(exc),
                duration_seconds=round(time.time() - start_time, 3),
            )
            if isinstance(exc, httpx.DecodingError):
                msg = f"Undecodable response body from {method} {url}: {exc}"
                raise ProtocolMismatch(msg) from exc
            raise TransportError(exc, service_type=service_type, url=url) from exc

        logger.debug(
            "API request completed",
            method=method,
            url=url,
            status=response.status_code,
            duration_seconds=round(time.time() - start_time, 3),
        )
        return response

    def send(
        self,
        method: str,
        url: str,
        *,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        api_version: ApiVersion | None = None,
        timeout: float | None = None,
        service_type: str = "",
        extra_success: tuple[int, ...] = (),
    ) -> ApiResponse:
        """Send a request and interpret the response.

        Args:
            method: HTTP method.
            url: Fully-qualified request URL.
            token: Bearer token sent as ``X-Auth-Token``.
            params: Optional query parameters.
            json_body: Optional JSON request body.
            headers: Extra request headers.
            api_version: Negotiated microversion, if any.
            timeout: Per-request timeout overriding the default.
            service_type: Service type, used for version headers and errors.
            extra_success: Non-2xx statuses to treat as success.

        Returns:
            Decoded response; ``body`` is None for empty responses.

        Raises:
            AuthenticationRejected: On 401/403.
            ResourceNotFound: On 404.
            HttpError: On any other non-success status.
            TransportError: On connection, DNS, timeout or redirect failures.
            ProtocolMismatch: If a success body is not valid JSON or the body
                cannot be decoded with its declared content encoding.
        """
        method = method.upper()
        request_headers = dict(headers or {})
        request_headers.update(version_headers(service_type, api_version))
        if token is not None:
            request_headers[AUTH_HEADER] = token

        start_time = time.time()
        response = self.send_raw(
            method,
            url,
            params=params,
            json_body=json_body,
            headers=request_headers,
            timeout=timeout,
            service_type=service_type,
        )
        status = response.status_code

        if response.is_success or status in extra_success:
            return ApiResponse(
                status_code=status,
                url=str(response.url),
                headers={k.lower(): v for k, v in response.headers.items()},
                body=_decode_body(response),
                duration_seconds=round(time.time() - start_time, 3),
            )

        message, raw = _error_details(response)
        logger.info(
            "API error response",
            method=method,
            url=url,
            status=status,
            service_type=service_type,
            error_message=message,
        )
        if status in _REJECTION_STATUSES:
            raise AuthenticationRejected(
                status,
                service_type=service_type,
                path=url,
                message=message,
            )
        if status == 404:  # noqa: PLR2004
            raise ResourceNotFound(
                message=message,
                body=raw,
                service_type=service_type,
                method=method,
                url=url,
            )
        raise HttpError(
            status,
            message=message,
            body=raw,
            service_type=service_type,
            method=method,
            url=url,
        )

"""Authenticated session over an OpenStack cloud.

The session owns one :class:`~.identity.AuthProvider` and the token it
produced. Everything derived from a token (endpoint URLs, supported
version ranges, negotiated versions) lives in an immutable epoch object
that is replaced as a whole when the token is renewed, so callers always
see a token together with the catalog data resolved under it.
"""

import enum
import threading
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

import structlog

from .apiversion import ApiVersion, VersionRange, negotiate
from .cache import EpochCache
from .errors import (
    AuthenticationRejected,
    HttpError,
    ProtocolMismatch,
    TransportError,
    UnsupportedVersion,
)
from .identity import AuthProvider, Token
from .pagination import PageDecoder, PageQuery, ResourceStream
from .pipeline import ApiResponse, RequestPipeline, RequestSpec, join_url

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_INTERFACE = "public"

# Seconds before the real expiry at which a token is considered expired.
DEFAULT_EXPIRY_MARGIN = 60.0

# Status codes a version document may be served with.
_VERSION_DOCUMENT_STATUSES = (300,)


class SessionState(enum.Enum):
    """Authentication state of a session."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    RENEWING = "renewing"


class SessionStats:
    """Thread-safe counters describing session activity."""

    def __init__(self):
        self._lock = threading.Lock()
        self._authentications = 0
        self._authentication_errors = 0
        self._requests: Counter[tuple[str, str]] = Counter()

    def record_authentication(self, *, success: bool) -> None:
        with self._lock:
            if success:
                self._authentications += 1
            else:
                self._authentication_errors += 1

    def record_request(self, service_type: str, status: int | str) -> None:
        with self._lock:
            self._requests[(service_type, str(status))] += 1

    @property
    def authentications(self) -> int:
        with self._lock:
            return self._authentications

    @property
    def authentication_errors(self) -> int:
        with self._lock:
            return self._authentication_errors

    def requests(self) -> dict[tuple[str, str], int]:
        """Request counts keyed by (service_type, status)."""
        with self._lock:
            return dict(self._requests)


class _Epoch:
    """One token and everything resolved under it."""

    def __init__(self, token: Token):
        self.token = token
        self.endpoints: EpochCache[tuple[str, tuple[str, ...]], str] = EpochCache(
            "endpoints",
        )
        # Ranges and versions are keyed by the interfaces they were read from.
        self.ranges: EpochCache[tuple[str, tuple[str, ...]], VersionRange] = EpochCache(
            "version_ranges",
        )
        self.versions: EpochCache[
            tuple[str, tuple[str, ...], ApiVersion | None],
            ApiVersion | None,
        ] = EpochCache("api_versions")


def parse_version_document(body: Any, service_type: str = "") -> VersionRange:
    """Extract the supported microversion range from a version document.

    Understands a single ``{"version": {...}}`` document and a
    ``{"versions": [...]}`` list, where the ``CURRENT`` entry (or, failing
    that, the one with the highest id) is used. An empty or missing
    ``version`` field means the service has no microversions.

    Raises:
        ProtocolMismatch: If the body is not a version document.
    """
    if isinstance(body, dict) and isinstance(body.get("version"), dict):
        entry = body["version"]
    elif isinstance(body, dict) and isinstance(body.get("versions"), list):
        entries = [v for v in body["versions"] if isinstance(v, dict)]
        if not entries:
            msg = f"Version document for {service_type or 'service'} lists no versions"
            raise ProtocolMismatch(msg)
        current = [v for v in entries if str(v.get("status", "")).upper() == "CURRENT"]
        entry = current[0] if current else max(entries, key=_entry_id)
    else:
        msg = f"Unrecognized version document for {service_type or 'service'}"
        raise ProtocolMismatch(msg)

    max_text = entry.get("version") or entry.get("max_version")
    if not max_text:
        return VersionRange.unversioned()
    min_text = entry.get("min_version") or max_text
    try:
        return VersionRange(ApiVersion.parse(min_text), ApiVersion.parse(max_text))
    except ValueError as exc:
        msg = f"Invalid version range in version document: {min_text!r}-{max_text!r}"
        raise ProtocolMismatch(msg) from exc


def _entry_id(entry: dict[str, Any]) -> ApiVersion:
    try:
        return ApiVersion.parse(str(entry.get("id", "")))
    except ValueError:
        return ApiVersion(0, 0)


class Session:
    """Authenticated access to the services of one cloud.

    The token is obtained lazily on first use and renewed transparently
    once it is within ``expiry_margin`` seconds of expiring. Renewal
    replaces the token and all data derived from it in one step; if it
    fails, the previous token stays installed.

    Thread-safe: any number of threads may share one session.
    """

    def __init__(
        self,
        auth: AuthProvider,
        *,
        interface: str | Sequence[str] = DEFAULT_INTERFACE,
        region_name: str | None = None,
        api_versions: dict[str, ApiVersion | str] | None = None,
        expiry_margin: float = DEFAULT_EXPIRY_MARGIN,
        pipeline: RequestPipeline | None = None,
    ):
        """Initialize the session. No network access happens here.

        Args:
            auth: Provider used to obtain tokens.
            interface: Preferred endpoint interface(s), most preferred first.
            region_name: Optional region to restrict endpoint lookups to.
            api_versions: Per-service version used when callers request none.
            expiry_margin: Safety margin in seconds before token expiry.
            pipeline: Request pipeline (defaults to the provider's).

        Raises:
            ValueError: If expiry_margin is negative.
            InvalidInput: If an api_versions entry is malformed.
        """
        if expiry_margin < 0:
            msg = "expiry_margin must not be negative"
            raise ValueError(msg)

        self._auth = auth
        self._pipeline = pipeline or auth.pipeline
        self._interfaces = (interface,) if isinstance(interface, str) else tuple(interface)
        self._region_name = region_name
        self._api_versions = {
            service: ApiVersion.parse(version)
            for service, version in (api_versions or {}).items()
        }
        self._expiry_margin = expiry_margin

        self._epoch: _Epoch | None = None
        self._auth_lock = threading.Lock()
        self._renewing = False
        self.stats = SessionStats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager and cleanup resources."""
        self.close()

    def close(self):
        """Close the underlying HTTP client."""
        self._pipeline.close()

    @property
    def state(self) -> SessionState:
        if self._renewing:
            return SessionState.RENEWING
        if self._epoch is None:
            return SessionState.UNAUTHENTICATED
        return SessionState.AUTHENTICATED

    @property
    def interfaces(self) -> tuple[str, ...]:
        return self._interfaces

    @property
    def current_token(self) -> Token | None:
        """The installed token, without authenticating or renewing."""
        epoch = self._epoch
        return epoch.token if epoch is not None else None

    @property
    def token(self) -> Token:
        """A valid token, authenticating or renewing first if needed."""
        return self._active_epoch().token

    # ------------------------------------------------------------------
    # Token epochs
    # ------------------------------------------------------------------

    def _is_usable(self, epoch: _Epoch | None) -> bool:
        return epoch is not None and not epoch.token.is_expired(self._expiry_margin)

    def _active_epoch(self) -> _Epoch:
        epoch = self._epoch
        if self._is_usable(epoch):
            return epoch
        return self._renew(stale=epoch)

    def _renew(self, stale: _Epoch | None, *, force: bool = False) -> _Epoch:
        """Install a new token unless another caller already replaced ``stale``."""
        with self._auth_lock:
            current = self._epoch
            if not force and current is not stale and self._is_usable(current):
                return current

            self._renewing = current is not None
            try:
                token = self._auth.authenticate()
            except Exception:
                self.stats.record_authentication(success=False)
                logger.warning(
                    "Token renewal failed, keeping previous token"
                    if current is not None
                    else "Authentication failed",
                    method=self._auth.method,
                )
                raise
            finally:
                self._renewing = False

            self.stats.record_authentication(success=True)
            epoch = _Epoch(token)
            self._epoch = epoch
            logger.info(
                "Installed new token",
                renewed=current is not None,
                expires_in_seconds=int(token.expires_in()),
            )
            return epoch

    def refresh(self) -> Token:
        """Re-authenticate now and drop every cached endpoint and version.

        On failure the previous token (if any) remains installed.

        Returns:
            The new token.
        """
        return self._renew(self._epoch, force=True).token

    # ------------------------------------------------------------------
    # Endpoint and version resolution
    # ------------------------------------------------------------------

    def _resolve_interfaces(self, interface: str | Sequence[str] | None) -> tuple[str, ...]:
        if interface is None:
            return self._interfaces
        if isinstance(interface, str):
            return (interface,)
        return tuple(interface)

    def _endpoint_in(
        self,
        epoch: _Epoch,
        service_type: str,
        interfaces: tuple[str, ...],
    ) -> str:
        return epoch.endpoints.get_or_fetch(
            (service_type, interfaces),
            lambda: epoch.token.catalog.find_endpoint(
                service_type,
                interfaces,
                self._region_name,
            ),
        )

    def get_endpoint(
        self,
        service_type: str,
        interface: str | Sequence[str] | None = None,
    ) -> str:
        """Return the endpoint URL of a service.

        Args:
            service_type: Catalog service type, e.g. "compute".
            interface: Interface preference overriding the session default.

        Raises:
            EndpointNotFound: If the catalog has no matching endpoint.
        """
        epoch = self._active_epoch()
        return self._endpoint_in(epoch, service_type, self._resolve_interfaces(interface))

    def _discover_range(
        self,
        epoch: _Epoch,
        service_type: str,
        interfaces: tuple[str, ...],
    ) -> VersionRange:
        endpoint = self._endpoint_in(epoch, service_type, interfaces)
        response = self._send_in(
            epoch,
            RequestSpec(
                service_type=service_type,
                extra_success=_VERSION_DOCUMENT_STATUSES,
            ),
            endpoint,
        )
        version_range = parse_version_document(response.body, service_type)
        logger.info(
            "Discovered API versions",
            service_type=service_type,
            endpoint=endpoint,
            min_version=str(version_range.min) if version_range.min else None,
            max_version=str(version_range.max) if version_range.max else None,
        )
        return version_range

    def _range_in(
        self,
        epoch: _Epoch,
        service_type: str,
        interfaces: tuple[str, ...],
    ) -> VersionRange:
        return epoch.ranges.get_or_fetch(
            (service_type, interfaces),
            lambda: self._discover_range(epoch, service_type, interfaces),
        )

    def _with_renewal(self, service_type: str, resolve: Callable[[_Epoch], T]) -> T:
        """Run ``resolve`` under the active epoch, renewing once on rejection."""
        epoch = self._active_epoch()
        try:
            return resolve(epoch)
        except AuthenticationRejected as exc:
            logger.info(
                "Version discovery rejected, renewing token and retrying",
                service_type=service_type,
                status=exc.status_code,
            )
        return resolve(self._renew(stale=epoch))

    def get_version_range(
        self,
        service_type: str,
        interface: str | Sequence[str] | None = None,
    ) -> VersionRange:
        """Return the microversion range the service supports.

        The range is read from the version document of the endpoint the
        interface preference selects, once per token and interface.

        Raises:
            AuthenticationRejected: If the version document is refused again
                after renewing the token.
        """
        interfaces = self._resolve_interfaces(interface)
        return self._with_renewal(
            service_type,
            lambda epoch: self._range_in(epoch, service_type, interfaces),
        )

    def get_api_version(
        self,
        service_type: str,
        requested: ApiVersion | str | None = None,
        interface: str | Sequence[str] | None = None,
    ) -> ApiVersion | None:
        """Negotiate the API version to use with a service.

        Args:
            service_type: Catalog service type.
            requested: Version the caller needs; defaults to the configured
                override for the service, else the highest supported.
            interface: Interface preference overriding the session default.

        Returns:
            The negotiated version, or None for services without
            microversions when nothing was requested.

        Raises:
            UnsupportedVersion: If the requested version is not supported.
            InvalidInput: If ``requested`` is malformed.
        """
        wanted = (
            ApiVersion.parse(requested)
            if requested is not None
            else self._api_versions.get(service_type)
        )
        interfaces = self._resolve_interfaces(interface)

        def resolve(epoch: _Epoch) -> ApiVersion | None:
            version_range = self._range_in(epoch, service_type, interfaces)
            if not version_range.is_versioned:
                if wanted is None:
                    return None
                raise UnsupportedVersion(service_type, wanted, version_range)
            return negotiate(
                wanted,
                version_range.min or version_range.max,
                version_range.max,
                service_type,
            )

        return self._with_renewal(
            service_type,
            lambda epoch: epoch.versions.get_or_fetch(
                (service_type, interfaces, wanted),
                lambda: resolve(epoch),
            ),
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _send_in(self, epoch: _Epoch, spec: RequestSpec, endpoint: str) -> ApiResponse:
        try:
            response = self._pipeline.send(
                spec.method,
                join_url(endpoint, spec.path),
                token=epoch.token.value.get_secret_value(),
                params=spec.params,
                json_body=spec.json_body,
                headers=spec.headers,
                api_version=spec.api_version,
                timeout=spec.timeout,
                service_type=spec.service_type,
                extra_success=spec.extra_success,
            )
        except (HttpError, AuthenticationRejected) as exc:
            self.stats.record_request(spec.service_type, exc.status_code)
            raise
        except TransportError:
            self.stats.record_request(spec.service_type, "transport_error")
            raise
        self.stats.record_request(spec.service_type, response.status_code)
        return response

    def _send_spec(self, epoch: _Epoch, spec: RequestSpec) -> ApiResponse:
        endpoint = self._endpoint_in(
            epoch,
            spec.service_type,
            self._resolve_interfaces(spec.interface),
        )
        return self._send_in(epoch, spec, endpoint)

    def execute(self, spec: RequestSpec) -> ApiResponse:
        """Send an authenticated request to a service.

        On a 401/403 the token is renewed once and the request retried
        once; a second rejection is raised.

        Raises:
            AuthenticationFailed: If the retried request is rejected again
                or re-authentication fails.
            ResourceNotFound: On 404.
            HttpError: On other non-success statuses.
            TransportError: On connection, DNS or timeout failures.
            EndpointNotFound: If the service is not in the catalog.
        """
        epoch = self._active_epoch()
        try:
            return self._send_spec(epoch, spec)
        except AuthenticationRejected as exc:
            logger.info(
                "Request rejected, renewing token and retrying",
                service_type=spec.service_type,
                method=spec.method,
                path=spec.path,
                status=exc.status_code,
            )
        epoch = self._renew(stale=epoch)
        return self._send_spec(epoch, spec)

    def request(self, method: str, service_type: str, path: str = "", **kwargs) -> ApiResponse:
        """Build a :class:`RequestSpec` from arguments and execute it."""
        return self.execute(
            RequestSpec(service_type=service_type, method=method, path=path, **kwargs),
        )

    def get(self, service_type: str, path: str = "", **kwargs) -> ApiResponse:
        return self.request("GET", service_type, path, **kwargs)

    def post(self, service_type: str, path: str = "", **kwargs) -> ApiResponse:
        return self.request("POST", service_type, path, **kwargs)

    def put(self, service_type: str, path: str = "", **kwargs) -> ApiResponse:
        return self.request("PUT", service_type, path, **kwargs)

    def patch(self, service_type: str, path: str = "", **kwargs) -> ApiResponse:
        return self.request("PATCH", service_type, path, **kwargs)

    def delete(self, service_type: str, path: str = "", **kwargs) -> ApiResponse:
        return self.request("DELETE", service_type, path, **kwargs)

    def paginate(
        self,
        service_type: str,
        path: str,
        decode_page: PageDecoder[Any],
        *,
        params: dict[str, Any] | None = None,
        api_version: ApiVersion | None = None,
        interface: str | None = None,
        timeout: float | None = None,
    ) -> ResourceStream[Any]:
        """Return a lazy stream over a paginated listing.

        Args:
            service_type: Catalog service type.
            path: Listing path relative to the service endpoint.
            decode_page: Function turning a raw page into records and a
                next-page descriptor.
            params: Filters sent with every page request.
            api_version: Negotiated version sent with every page request.
            interface: Interface preference overriding the session default.
            timeout: Per-page request timeout.
        """

        def fetch_page(query: PageQuery) -> Any:
            response = self.execute(
                RequestSpec(
                    service_type=service_type,
                    path=query.path,
                    params=query.params,
                    api_version=api_version,
                    interface=interface,
                    timeout=timeout,
                ),
            )
            return response.body

        return ResourceStream(
            fetch_page,
            decode_page,
            PageQuery(path=path, params=dict(params or {})),
        )

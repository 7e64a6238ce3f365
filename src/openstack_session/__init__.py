"""OpenStack session library.

Authenticates against an OpenStack identity service, resolves service
endpoints and API microversions from the catalog, and exposes a uniform
request pipeline and lazy paginated listings for resource modules.
"""

from .apiversion import ApiVersion, VersionRange, negotiate
from .errors import (
    AuthenticationFailed,
    AuthenticationRejected,
    EndpointNotFound,
    HttpError,
    InvalidInput,
    OpenStackError,
    ProtocolMismatch,
    ResourceNotFound,
    TransportError,
    UnsupportedVersion,
)
from .identity import AuthProvider, PasswordCredentials, TokenCredentials
from .pagination import ResourceStream
from .pipeline import ApiResponse, RequestPipeline, RequestSpec
from .session import Session, SessionState

__version__ = "0.1.0"

__all__ = [
    "ApiResponse",
    "ApiVersion",
    "AuthProvider",
    "AuthenticationFailed",
    "AuthenticationRejected",
    "EndpointNotFound",
    "HttpError",
    "InvalidInput",
    "OpenStackError",
    "PasswordCredentials",
    "ProtocolMismatch",
    "RequestPipeline",
    "RequestSpec",
    "ResourceNotFound",
    "ResourceStream",
    "Session",
    "SessionState",
    "TokenCredentials",
    "TransportError",
    "UnsupportedVersion",
    "VersionRange",
    "negotiate",
]

"""API microversion parsing, ordering and negotiation.

Services announce the range of microversions they support as
``min_version``/``version`` strings in their version documents. Requests
carry the negotiated version in the ``OpenStack-API-Version`` header (and,
for a few services, a legacy service-specific header).
"""

import re
from typing import NamedTuple

from .errors import InvalidInput, UnsupportedVersion

_VERSION_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?$")

# Services whose header name differs from their catalog service type.
_HEADER_SERVICE_NAMES = {
    "block-storage": "volume",
    "volumev3": "volume",
}

_LEGACY_HEADERS = {
    "compute": "X-OpenStack-Nova-API-Version",
    "baremetal": "X-OpenStack-Ironic-API-Version",
}


class ApiVersion(NamedTuple):
    """A (major, minor) API version with total ordering.

    Ordering compares the major component first, then the minor one.
    """

    major: int
    minor: int = 0

    @classmethod
    def parse(cls, text: "str | int | ApiVersion") -> "ApiVersion":
        """Parse ``"major.minor"``, ``"major"`` or ``"vMajor.minor"``.

        Raises:
            InvalidInput: If the text is not a valid version.
        """
        if isinstance(text, ApiVersion):
            return text
        if isinstance(text, int) and not isinstance(text, bool):
            if text < 0:
                msg = f"API version must not be negative: {text}"
                raise InvalidInput(msg)
            return cls(text, 0)
        if not isinstance(text, str):
            msg = f"API version must be a string, got {type(text).__name__}"
            raise InvalidInput(msg)

        match = _VERSION_RE.match(text.strip())
        if match is None:
            msg = f"Invalid API version: {text!r}"
            raise InvalidInput(msg)
        major, minor = match.groups()
        return cls(int(major), int(minor or 0))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


class VersionRange(NamedTuple):
    """Inclusive range of versions supported by a service.

    Both ends are ``None`` when the service does not support microversions.
    """

    min: ApiVersion | None
    max: ApiVersion | None

    @classmethod
    def unversioned(cls) -> "VersionRange":
        return cls(None, None)

    @property
    def is_versioned(self) -> bool:
        return self.max is not None

    def __str__(self) -> str:
        if not self.is_versioned:
            return "no microversions"
        return f"{self.min or self.max}-{self.max}"


def negotiate(
    requested: ApiVersion | None,
    supported_min: ApiVersion,
    supported_max: ApiVersion,
    service_type: str = "",
) -> ApiVersion:
    """Pick the API version to use for a service.

    Args:
        requested: Version the caller asked for, or None for "latest".
        supported_min: Lowest version the service supports.
        supported_max: Highest version the service supports.
        service_type: Service type, used in error messages only.

    Returns:
        ``supported_max`` when nothing was requested, else ``requested``.

    Raises:
        UnsupportedVersion: If ``requested`` is outside ``[min, max]`` or
            the range itself is empty.
    """
    available = VersionRange(supported_min, supported_max)
    if supported_min > supported_max:
        raise UnsupportedVersion(service_type, requested, available)
    if requested is None:
        return supported_max
    if supported_min <= requested <= supported_max:
        return requested
    raise UnsupportedVersion(service_type, requested, available)


def version_headers(service_type: str, version: ApiVersion | None) -> dict[str, str]:
    """Build the microversion headers for a request.

    Returns an empty dict for unversioned requests.
    """
    if version is None:
        return {}
    header_service = _HEADER_SERVICE_NAMES.get(service_type, service_type)
    headers = {"OpenStack-API-Version": f"{header_service} {version}"}
    if legacy := _LEGACY_HEADERS.get(service_type):
        headers[legacy] = str(version)
    return headers

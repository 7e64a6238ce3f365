"""Identity service types: credentials, tokens and the service catalog.

Pydantic models for the Keystone v3 token document and the credentials
used to obtain it. All models are frozen: a token and its catalog are
replaced wholesale on renewal and never mutated in place.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

from ..errors import EndpointNotFound

# Official service-types-authority aliases for types still found in
# older catalogs.
SERVICE_TYPE_ALIASES: dict[str, tuple[str, ...]] = {
    "block-storage": ("volumev3", "volumev2", "volume", "block-store"),
    "load-balancer": ("octavia",),
    "container-infrastructure-management": ("container-infra",),
    "shared-file-system": ("sharev2", "share"),
}


class PasswordCredentials(BaseModel):
    """User/password credentials with optional project or domain scope."""

    model_config = ConfigDict(frozen=True)

    method: Literal["password"] = "password"
    username: str | None = None
    user_id: str | None = None
    password: SecretStr
    user_domain_name: str = "Default"
    project_name: str | None = None
    project_id: str | None = None
    project_domain_name: str = "Default"
    domain_name: str | None = None

    @model_validator(mode="after")
    def _check_user(self) -> "PasswordCredentials":
        if not self.username and not self.user_id:
            msg = "either username or user_id is required"
            raise ValueError(msg)
        return self


class TokenCredentials(BaseModel):
    """A pre-issued token, reused as-is."""

    model_config = ConfigDict(frozen=True)

    method: Literal["token"] = "token"
    token: SecretStr


Credentials = Annotated[
    PasswordCredentials | TokenCredentials,
    Field(discriminator="method"),
]


def _normalize_interface(interface: str) -> str:
    # Keystone v2 catalogs used publicURL/internalURL/adminURL.
    interface = interface.lower()
    if interface.endswith("url"):
        interface = interface[:-3]
    return interface


class Endpoint(BaseModel):
    """One endpoint of a catalog service."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    interface: str
    url: str
    region: str | None = None
    region_id: str | None = None
    id: str | None = None

    def matches(self, interface: str, region: str | None) -> bool:
        if _normalize_interface(self.interface) != _normalize_interface(interface):
            return False
        if region is None:
            return True
        return region in (self.region, self.region_id)


class CatalogService(BaseModel):
    """A catalog entry: one service and its endpoints."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str
    name: str = ""
    id: str | None = None
    endpoints: tuple[Endpoint, ...] = ()


class ServiceCatalog(BaseModel):
    """Service catalog returned with a token."""

    model_config = ConfigDict(frozen=True)

    services: tuple[CatalogService, ...] = ()

    def service_types(self) -> list[str]:
        return [service.type for service in self.services]

    def find_endpoint(
        self,
        service_type: str,
        interfaces: Sequence[str],
        region: str | None = None,
    ) -> str:
        """Find the endpoint URL for a service type.

        Interfaces are tried in the given order of preference. For each
        interface, services matching the type (or one of its aliases) are
        scanned in catalog order and the first matching endpoint wins.

        Args:
            service_type: Service type, e.g. "compute".
            interfaces: Interface names in order of preference.
            region: Optional region name or id to restrict the search to.

        Returns:
            The endpoint URL.

        Raises:
            EndpointNotFound: If no endpoint matches.
        """
        accepted = (service_type, *SERVICE_TYPE_ALIASES.get(service_type, ()))
        candidates = [
            service
            for wanted in accepted
            for service in self.services
            if service.type == wanted
        ]
        for interface in interfaces:
            for service in candidates:
                for endpoint in service.endpoints:
                    if endpoint.matches(interface, region):
                        return endpoint.url
        raise EndpointNotFound(service_type, tuple(interfaces), region)


class Token(BaseModel):
    """An identity token together with its expiry and catalog."""

    model_config = ConfigDict(frozen=True)

    value: SecretStr
    expires_at: datetime
    catalog: ServiceCatalog = ServiceCatalog()
    user_id: str | None = None
    project_id: str | None = None

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def expires_in(self, now: datetime | None = None) -> float:
        """Seconds until expiry (negative once expired)."""
        now = now or datetime.now(timezone.utc)
        return (self.expires_at - now).total_seconds()

    def is_expired(self, margin: float = 0.0, now: datetime | None = None) -> bool:
        """Whether the token must no longer be used.

        Args:
            margin: Safety margin in seconds subtracted from the expiry.
            now: Current time (defaults to now, UTC).
        """
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at - timedelta(seconds=margin)

"""Compute API response types.

Pydantic models for servers and flavors as returned by the compute v2.1
API. Unknown enum values degrade to ``UNKNOWN`` instead of failing
validation, since newer deployments add statuses over time.
"""

import enum
from datetime import datetime
from ipaddress import IPv4Address, IPv6Address
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = structlog.get_logger(__name__)


class ServerStatus(str, enum.Enum):
    """Server statuses reported by the compute API."""

    ACTIVE = "ACTIVE"
    BUILDING = "BUILD"
    DELETED = "DELETED"
    ERROR = "ERROR"
    HARD_REBOOTING = "HARD_REBOOT"
    MIGRATING = "MIGRATING"
    PAUSED = "PAUSED"
    REBOOTING = "REBOOT"
    RESIZING = "RESIZE"
    REVERTING_RESIZE = "REVERT_RESIZE"
    SHUT_OFF = "SHUTOFF"
    SUSPENDED = "SUSPENDED"
    RESCUING = "RESCUE"
    SHELVED = "SHELVED"
    SHELVED_OFFLOADED = "SHELVED_OFFLOADED"
    SOFT_DELETED = "SOFT_DELETED"
    UPDATING_PASSWORD = "PASSWORD"
    VERIFYING_RESIZE = "VERIFY_RESIZE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def _missing_(cls, value: object) -> "ServerStatus":
        logger.warning("Got unknown server status", status=value)
        return cls.UNKNOWN

    def __str__(self) -> str:
        return self.value


class AddressType(str, enum.Enum):
    """Kind of a server address."""

    FIXED = "fixed"
    FLOATING = "floating"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "AddressType":
        return cls.UNKNOWN


class Link(BaseModel):
    """A hypermedia link."""

    href: str
    rel: str = ""


class Ref(BaseModel):
    """Reference to another resource (image, flavor)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    links: list[Link] = Field(default_factory=list)


class ServerAddress(BaseModel):
    """One address of a server."""

    model_config = ConfigDict(populate_by_name=True)

    addr: IPv4Address | IPv6Address
    mac_addr: str | None = Field(None, alias="OS-EXT-IPS-MAC:mac_addr")
    addr_type: AddressType = Field(AddressType.UNKNOWN, alias="OS-EXT-IPS:type")

    @field_validator("addr_type", mode="before")
    @classmethod
    def _parse_addr_type(cls, value: Any) -> Any:
        return AddressType(value) if isinstance(value, str) else value


def _empty_as_none(value: Any) -> Any:
    # The compute API reports unset references as "" rather than null.
    if value == "":
        return None
    return value


class ServerSummary(BaseModel):
    """Server as returned by the plain listing."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str


class Server(BaseModel):
    """Server as returned by the detailed listing and by GET."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    status: ServerStatus = ServerStatus.UNKNOWN
    access_ipv4: IPv4Address | None = Field(None, alias="accessIPv4")
    access_ipv6: IPv6Address | None = Field(None, alias="accessIPv6")
    addresses: dict[str, list[ServerAddress]] = Field(default_factory=dict)
    availability_zone: str = Field("", alias="OS-EXT-AZ:availability_zone")
    created: datetime
    updated: datetime
    image: Ref | None = None
    flavor: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str
    user_id: str

    @field_validator("access_ipv4", "access_ipv6", "image", mode="before")
    @classmethod
    def _unset_to_none(cls, value: Any) -> Any:
        return _empty_as_none(value)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> Any:
        return ServerStatus(value) if isinstance(value, str) else value

    @property
    def ip_addresses(self) -> list[IPv4Address | IPv6Address]:
        """All addresses of the server, in network order."""
        return [address.addr for network in self.addresses.values() for address in network]


class FlavorSummary(BaseModel):
    """Flavor as returned by the plain listing."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str


class Flavor(BaseModel):
    """Flavor as returned by the detailed listing and by GET."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    vcpus: int
    ram: int
    disk: int
    ephemeral: int = Field(0, alias="OS-FLV-EXT-DATA:ephemeral")
    swap: int = 0
    is_public: bool = Field(True, alias="os-flavor-access:is_public")

    @field_validator("swap", mode="before")
    @classmethod
    def _swap_unset(cls, value: Any) -> Any:
        return _empty_as_none(value) or 0

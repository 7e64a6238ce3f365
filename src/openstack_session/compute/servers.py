"""Compute servers and flavors.

Declares the compute API paths and record schemas; transport, version
negotiation and pagination are delegated to the session.
"""

import enum
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..apiversion import ApiVersion
from ..errors import ProtocolMismatch
from ..pagination import ResourceStream, links_decoder
from ..session import Session
from .types import Flavor, FlavorSummary, Server, ServerSummary

SERVICE_TYPE = "compute"

ModelT = TypeVar("ModelT", bound=BaseModel)


class ServerSortKey(str, enum.Enum):
    """Keys servers can be sorted by."""

    ACCESS_IPV4 = "access_ip_v4"
    ACCESS_IPV6 = "access_ip_v6"
    AUTO_DISK_CONFIG = "auto_disk_config"
    AVAILABILITY_ZONE = "availability_zone"
    CONFIG_DRIVE = "config_drive"
    CREATED_AT = "created_at"
    DISPLAY_DESCRIPTION = "display_description"
    DISPLAY_NAME = "display_name"
    HOST = "host"
    HOST_NAME = "hostname"
    IMAGE_REF = "image_ref"
    INSTANCE_TYPE_ID = "instance_type_id"
    KERNEL_ID = "kernel_id"
    KEY_NAME = "key_name"
    LAUNCH_INDEX = "launch_index"
    LAUNCHED_AT = "launched_at"
    LOCKED_BY = "locked_by"
    NODE = "node"
    POWER_STATE = "power_state"
    PROGRESS = "progress"
    PROJECT_ID = "project_id"
    RAMDISK_ID = "ramdisk_id"
    ROOT_DEVICE_NAME = "root_device_name"
    TASK_STATE = "task_state"
    TERMINATED_AT = "terminated_at"
    UPDATED_AT = "updated_at"
    USER_ID = "user_id"
    UUID = "uuid"
    VM_STATE = "vm_state"


class ServerQuery(BaseModel):
    """Filters and paging options for server listings."""

    model_config = ConfigDict(frozen=True)

    limit: int | None = Field(None, gt=0)
    marker: str | None = None
    sort_key: ServerSortKey | None = None
    sort_dir: Literal["asc", "desc"] | None = None
    filters: dict[str, str] = Field(default_factory=dict)

    def to_params(self) -> dict[str, Any]:
        """Query parameters for the first page."""
        params: dict[str, Any] = dict(self.filters)
        if self.limit is not None:
            params["limit"] = self.limit
        if self.marker is not None:
            params["marker"] = self.marker
        if self.sort_key is not None:
            params["sort_key"] = self.sort_key.value
        if self.sort_dir is not None:
            params["sort_dir"] = self.sort_dir
        return params


def _decode_one(body: Any, key: str, model: type[ModelT]) -> ModelT:
    if not isinstance(body, dict) or not isinstance(body.get(key), dict):
        msg = f"Response has no {key!r} object"
        raise ProtocolMismatch(msg)
    try:
        return model.model_validate(body[key])
    except ValidationError as exc:
        msg = f"Invalid {key} record: {exc}"
        raise ProtocolMismatch(msg) from exc


def _list(
    session: Session,
    path: str,
    collection_key: str,
    model: type[BaseModel],
    params: dict[str, Any],
    api_version: ApiVersion | str | None,
    interface: str | None,
) -> ResourceStream[Any]:
    version = session.get_api_version(SERVICE_TYPE, api_version, interface)
    return session.paginate(
        SERVICE_TYPE,
        path,
        links_decoder(collection_key, model),
        params=params,
        api_version=version,
        interface=interface,
    )


def list_servers(
    session: Session,
    query: ServerQuery | None = None,
    api_version: ApiVersion | str | None = None,
    interface: str | None = None,
) -> ResourceStream[ServerSummary]:
    """List servers (id and name only)."""
    params = (query or ServerQuery()).to_params()
    return _list(session, "/servers", "servers", ServerSummary, params, api_version, interface)


def list_servers_detail(
    session: Session,
    query: ServerQuery | None = None,
    api_version: ApiVersion | str | None = None,
    interface: str | None = None,
) -> ResourceStream[Server]:
    """List servers with full details."""
    params = (query or ServerQuery()).to_params()
    return _list(session, "/servers/detail", "servers", Server, params, api_version, interface)


def get_server(
    session: Session,
    server_id: str,
    api_version: ApiVersion | str | None = None,
    interface: str | None = None,
) -> Server:
    """Fetch one server.

    Raises:
        ResourceNotFound: If the server does not exist.
    """
    version = session.get_api_version(SERVICE_TYPE, api_version, interface)
    response = session.get(
        SERVICE_TYPE,
        f"/servers/{server_id}",
        api_version=version,
        interface=interface,
    )
    return _decode_one(response.body, "server", Server)


def list_flavors(
    session: Session,
    limit: int | None = None,
    api_version: ApiVersion | str | None = None,
    interface: str | None = None,
) -> ResourceStream[FlavorSummary]:
    """List flavors (id and name only)."""
    params = {"limit": limit} if limit is not None else {}
    return _list(session, "/flavors", "flavors", FlavorSummary, params, api_version, interface)


def list_flavors_detail(
    session: Session,
    limit: int | None = None,
    api_version: ApiVersion | str | None = None,
    interface: str | None = None,
) -> ResourceStream[Flavor]:
    """List flavors with full details."""
    params = {"limit": limit} if limit is not None else {}
    return _list(session, "/flavors/detail", "flavors", Flavor, params, api_version, interface)


def get_flavor(
    session: Session,
    flavor_id: str,
    api_version: ApiVersion | str | None = None,
    interface: str | None = None,
) -> Flavor:
    """Fetch one flavor.

    Raises:
        ResourceNotFound: If the flavor does not exist.
    """
    version = session.get_api_version(SERVICE_TYPE, api_version, interface)
    response = session.get(
        SERVICE_TYPE,
        f"/flavors/{flavor_id}",
        api_version=version,
        interface=interface,
    )
    return _decode_one(response.body, "flavor", Flavor)

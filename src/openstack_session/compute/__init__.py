"""Compute (Nova) resource module.

Exports:
    list_servers, list_servers_detail, get_server: Server access.
    list_flavors, list_flavors_detail, get_flavor: Flavor access.
    ServerQuery, ServerSortKey: Listing options.
    types: Module containing the Pydantic models.
"""

from . import types
from .servers import (
    SERVICE_TYPE,
    ServerQuery,
    ServerSortKey,
    get_flavor,
    get_server,
    list_flavors,
    list_flavors_detail,
    list_servers,
    list_servers_detail,
)
from .types import Flavor, FlavorSummary, Server, ServerStatus, ServerSummary

__all__ = [
    "SERVICE_TYPE",
    "Flavor",
    "FlavorSummary",
    "Server",
    "ServerQuery",
    "ServerSortKey",
    "ServerStatus",
    "ServerSummary",
    "get_flavor",
    "get_server",
    "list_flavors",
    "list_flavors_detail",
    "list_servers",
    "list_servers_detail",
    "types",
]

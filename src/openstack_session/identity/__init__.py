"""Identity service client package.

Exchanges credentials for Keystone v3 tokens and exposes the service
catalog that comes with them.

Exports:
    AuthProvider: Obtains tokens for any supported credential variant.
    Credentials: Discriminated union of the credential variants.
    PasswordCredentials: User/password credentials with optional scope.
    TokenCredentials: A pre-issued token.
    ServiceCatalog: Catalog with endpoint lookup.
    Token: Token with expiry and catalog.
    types: Module containing the Pydantic models.
"""

from . import types
from .auth import AuthProvider, normalize_auth_url
from .types import (
    CatalogService,
    Credentials,
    Endpoint,
    PasswordCredentials,
    ServiceCatalog,
    Token,
    TokenCredentials,
)

__all__ = [
    "AuthProvider",
    "CatalogService",
    "Credentials",
    "Endpoint",
    "PasswordCredentials",
    "ServiceCatalog",
    "Token",
    "TokenCredentials",
    "normalize_auth_url",
    "types",
]

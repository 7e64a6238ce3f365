"""Keystone v3 authentication.

The provider turns credentials into a :class:`~.types.Token` carrying the
service catalog. It never retries: the session decides when to call
:meth:`AuthProvider.authenticate` again.
"""

from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from ..errors import (
    AuthenticationFailed,
    AuthenticationRejected,
    ProtocolMismatch,
    ResourceNotFound,
)
from ..pipeline import AUTH_HEADER, ApiResponse, RequestPipeline
from .types import (
    Credentials,
    PasswordCredentials,
    ServiceCatalog,
    Token,
    TokenCredentials,
)

logger = structlog.get_logger(__name__)

SUBJECT_TOKEN_HEADER = "X-Subject-Token"

_credentials_adapter: TypeAdapter[PasswordCredentials | TokenCredentials] = (
    TypeAdapter(Credentials)
)


def normalize_auth_url(auth_url: str) -> str:
    """Return the identity v3 base URL for ``auth_url``.

    Accepts URLs with or without a trailing ``/v3``.
    """
    auth_url = auth_url.rstrip("/")
    if not auth_url:
        msg = "auth_url cannot be empty"
        raise ValueError(msg)
    if auth_url.endswith("/v3"):
        return auth_url
    return f"{auth_url}/v3"


def password_auth_body(credentials: PasswordCredentials) -> dict[str, Any]:
    """Build the ``POST /v3/auth/tokens`` body for password authentication."""
    user: dict[str, Any] = {"password": credentials.password.get_secret_value()}
    if credentials.user_id:
        user["id"] = credentials.user_id
    else:
        user["name"] = credentials.username
        user["domain"] = {"name": credentials.user_domain_name}

    auth: dict[str, Any] = {
        "identity": {"methods": ["password"], "password": {"user": user}},
    }
    if credentials.project_id:
        auth["scope"] = {"project": {"id": credentials.project_id}}
    elif credentials.project_name:
        auth["scope"] = {
            "project": {
                "name": credentials.project_name,
                "domain": {"name": credentials.project_domain_name},
            },
        }
    elif credentials.domain_name:
        auth["scope"] = {"domain": {"name": credentials.domain_name}}
    return {"auth": auth}


def parse_token_response(response: ApiResponse, token_value: str) -> Token:
    """Build a Token from a Keystone v3 token document.

    Raises:
        ProtocolMismatch: If the document does not have the expected shape.
    """
    body = response.body
    if not isinstance(body, dict) or not isinstance(body.get("token"), dict):
        msg = "Identity response has no 'token' object"
        raise ProtocolMismatch(msg)
    document = body["token"]

    try:
        catalog = ServiceCatalog(services=document.get("catalog") or ())
        return Token(
            value=token_value,
            expires_at=document["expires_at"],
            catalog=catalog,
            user_id=(document.get("user") or {}).get("id"),
            project_id=(document.get("project") or {}).get("id"),
        )
    except KeyError as exc:
        msg = f"Identity response is missing {exc.args[0]!r}"
        raise ProtocolMismatch(msg) from exc
    except (ValidationError, AttributeError) as exc:
        msg = f"Identity response could not be parsed: {exc}"
        raise ProtocolMismatch(msg) from exc


class AuthProvider:
    """Obtains tokens from the identity service.

    One provider handles every credential variant: password credentials
    are exchanged for a new token, a pre-issued token is validated and its
    catalog fetched. The session does not know which variant is active.
    """

    def __init__(
        self,
        auth_url: str,
        credentials: PasswordCredentials | TokenCredentials | dict[str, Any],
        pipeline: RequestPipeline | None = None,
        timeout: float | None = None,
    ):
        """Initialize the provider.

        Args:
            auth_url: Identity endpoint, with or without ``/v3``.
            credentials: Credentials model or a dict with a ``method`` key.
            pipeline: Request pipeline used for the handshake.
            timeout: Timeout for identity requests (pipeline default if None).
        """
        self.auth_url = normalize_auth_url(auth_url)
        if isinstance(credentials, dict):
            credentials = _credentials_adapter.validate_python(credentials)
        self._credentials = credentials
        self.pipeline = pipeline or RequestPipeline()
        self._timeout = timeout

    @property
    def method(self) -> str:
        return self._credentials.method

    def authenticate(self) -> Token:
        """Perform the identity handshake.

        Returns:
            A new Token with expiry and service catalog.

        Raises:
            AuthenticationFailed: If the credentials or token are rejected.
            TransportError: On network failure.
            ProtocolMismatch: If the identity response is unparseable.
            HttpError: On other identity-service errors.
        """
        logger.debug("Authenticating", auth_url=self.auth_url, method=self.method)
        try:
            if isinstance(self._credentials, PasswordCredentials):
                token = self._authenticate_password(self._credentials)
            else:
                token = self._authenticate_token(self._credentials)
        except AuthenticationRejected as exc:
            logger.warning(
                "Authentication rejected",
                auth_url=self.auth_url,
                method=self.method,
                status=exc.status_code,
            )
            msg = f"Identity service rejected {self.method} credentials"
            raise AuthenticationFailed(msg) from exc

        logger.info(
            "Authenticated",
            auth_url=self.auth_url,
            method=self.method,
            project_id=token.project_id,
            expires_at=token.expires_at.isoformat(),
            services=len(token.catalog.services),
        )
        return token

    def _authenticate_password(self, credentials: PasswordCredentials) -> Token:
        response = self.pipeline.send(
            "POST",
            f"{self.auth_url}/auth/tokens",
            json_body=password_auth_body(credentials),
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
            service_type="identity",
        )
        token_value = response.headers.get(SUBJECT_TOKEN_HEADER.lower())
        if not token_value:
            msg = f"Identity response has no {SUBJECT_TOKEN_HEADER} header"
            raise ProtocolMismatch(msg)
        return parse_token_response(response, token_value)

    def _authenticate_token(self, credentials: TokenCredentials) -> Token:
        token_value = credentials.token.get_secret_value()
        try:
            response = self.pipeline.send(
                "GET",
                f"{self.auth_url}/auth/tokens",
                headers={
                    AUTH_HEADER: token_value,
                    SUBJECT_TOKEN_HEADER: token_value,
                },
                timeout=self._timeout,
                service_type="identity",
            )
        except ResourceNotFound as exc:
            # Keystone answers 404 for unknown or revoked subject tokens.
            msg = "Identity service does not recognize the supplied token"
            raise AuthenticationFailed(msg) from exc
        return parse_token_response(response, token_value)

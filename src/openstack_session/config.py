"""Session configuration and logging setup."""

import json
import logging
import os
import pathlib
from typing import Literal

import pydantic
import structlog

from .apiversion import ApiVersion
from .identity import AuthProvider, Credentials
from .pipeline import DEFAULT_TIMEOUT, RequestPipeline
from .session import DEFAULT_EXPIRY_MARGIN, DEFAULT_INTERFACE, Session

CONFIG_ENV_VAR = "OPENSTACK_SESSION_CONFIG_PATH"
logger = structlog.get_logger(__name__)


class SessionConfig(pydantic.BaseModel):
    """Configuration for an OpenStack session."""

    auth_url: str = pydantic.Field(description="Identity service URL")
    credentials: Credentials = pydantic.Field(
        description="Password or pre-issued token credentials",
    )
    interface: Literal["public", "internal", "admin"] = pydantic.Field(
        DEFAULT_INTERFACE,
        description="Preferred endpoint interface",
    )
    region_name: str | None = pydantic.Field(None, description="Endpoint region")
    api_versions: dict[str, str] = pydantic.Field(
        default_factory=dict,
        description="Per-service API version overrides, e.g. {'compute': '2.53'}",
    )
    timeout: float = pydantic.Field(
        DEFAULT_TIMEOUT,
        description="Request timeout in seconds",
        gt=0,
    )
    expiry_margin: float = pydantic.Field(
        DEFAULT_EXPIRY_MARGIN,
        description="Seconds before token expiry at which it is renewed",
        ge=0,
    )
    verify: bool | str = pydantic.Field(
        True,
        description="Verify TLS certificates, or path to a CA bundle",
    )
    log_level: str = pydantic.Field("INFO", description="Logging level")

    @pydantic.field_validator("api_versions")
    @classmethod
    def _validate_versions(cls, value: dict[str, str]) -> dict[str, str]:
        for version in value.values():
            ApiVersion.parse(version)
        return value


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_path: str) -> SessionConfig:
    """Load configuration from JSON file."""
    path = pathlib.Path(config_path)
    if not path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with path.open("r") as f:
        data = json.load(f)

    return SessionConfig(**data)


def create_session_from_config(config: SessionConfig) -> Session:
    """Construct a session from validated config. No network access happens here."""
    pipeline = RequestPipeline(timeout=config.timeout, verify=config.verify)
    auth = AuthProvider(
        auth_url=config.auth_url,
        credentials=config.credentials,
        pipeline=pipeline,
    )
    logger.info(
        "Created session",
        auth_url=auth.auth_url,
        method=auth.method,
        interface=config.interface,
        region_name=config.region_name,
    )
    return Session(
        auth,
        interface=config.interface,
        region_name=config.region_name,
        api_versions=config.api_versions,
        expiry_margin=config.expiry_margin,
        pipeline=pipeline,
    )


def create_session(config_path: str | None = None) -> Session:
    """Create a session using a config path or the environment default."""
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR, "clouds.json")
    config = load_config(resolved_path)
    configure_logging(config.log_level)
    return create_session_from_config(config)

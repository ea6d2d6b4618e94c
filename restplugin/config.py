"""
Endpoint configuration - per-entity base URLs, authentication and proxy settings.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from restplugin.exceptions import ConfigurationError


class AuthMode(str, Enum):
    """Authentication variant selected once per service client."""

    NONE = "none"
    PASS_THROUGH = "passThrough"
    BASIC = "basicAuth"
    OAUTH = "oauth"
    BEARER = "bearerAuth"


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BasicAuthConfig(_ConfigModel):
    username: str | None = None
    password: str | None = None


class OAuthConfig(_ConfigModel):
    client_id: str | None = Field(default=None, alias="clientId")
    client_secret: str | None = Field(default=None, alias="clientSecret")
    tenant_id_guid: str | None = Field(default=None, alias="tenantIdGUID")
    token_url: str | None = Field(default=None, alias="tokenUrl")


class BearerAuthConfig(_ConfigModel):
    token: str | None = None


class ProxyConfig(_ConfigModel):
    host: str | None = None
    username: str | None = None
    password: str | None = None


class HttpOptionsOverride(BaseModel):
    """HTTP options that configuration or callers may layer over the defaults."""

    model_config = ConfigDict(extra="forbid")

    headers: dict[str, str] | None = None
    timeout: float | None = None
    verify: bool | None = None
    params: dict[str, Any] | None = None


class EntityConfig(_ConfigModel):
    """Configuration for a single baseEntity."""

    base_urls: list[str] = Field(default_factory=list, alias="baseUrls")
    basic_auth: BasicAuthConfig | None = Field(default=None, alias="basicAuth")
    oauth: OAuthConfig | None = None
    bearer_auth: BearerAuthConfig | None = Field(default=None, alias="bearerAuth")
    proxy: ProxyConfig | None = None
    options: HttpOptionsOverride | None = None

    @property
    def auth_mode(self) -> AuthMode:
        """Configured mode; basic wins over oauth, oauth over bearer."""
        if self.basic_auth is not None:
            return AuthMode.BASIC
        if self.oauth is not None:
            return AuthMode.OAUTH
        if self.bearer_auth is not None:
            return AuthMode.BEARER
        return AuthMode.NONE

    @property
    def has_proxy(self) -> bool:
        return self.proxy is not None and bool(self.proxy.host)


class EndpointConfig(_ConfigModel):
    """All entities served by this plugin instance."""

    entity: dict[str, EntityConfig] = Field(default_factory=dict)

    def get_entity(self, base_entity: str) -> EntityConfig:
        entity = self.entity.get(base_entity)
        if entity is None:
            raise ConfigurationError(
                f"configuration is missing required baseEntity configuration "
                f"for {base_entity}",
                entity=base_entity,
            )
        return entity


def load_endpoint_config(path: str | Path) -> EndpointConfig:
    """
    Load endpoint configuration from a JSON file.

    The entity map may sit under a top-level ``endpoint`` key or at the root.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e

    if isinstance(data, dict) and "endpoint" in data:
        data = data["endpoint"]

    try:
        config = EndpointConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid endpoint configuration: {e}") from e

    logger.info(f"Loaded {len(config.entity)} endpoint entities from {config_path}")
    return config

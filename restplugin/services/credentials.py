"""
CredentialStore - resolves secrets for an entity and the calling context.

Secrets come from one of two places:
- Pass-through: the caller's own Authorization header (Basic or Bearer)
- Configuration: literal values, or references such as ``env:NAME`` and
  ``file:/run/secrets/name`` resolved at use time
"""

import base64
import binascii
import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from restplugin.config import EntityConfig
from restplugin.exceptions import ConfigurationError

DEFAULT_IDENTITY = "__default__"

ENV_PREFIX = "env:"
FILE_PREFIX = "file:"

SecretResolver = Callable[[str], str | None]


@dataclass
class RequestContext:
    """Per-call context handed over by the host gateway."""

    authorization: str | None = None

    @property
    def has_pass_through(self) -> bool:
        return bool(self.authorization)


def parse_authorization(ctx: RequestContext | None) -> tuple[str | None, str | None]:
    """
    Split a pass-through Authorization header into (username, secret).

    Basic yields both parts, Bearer yields (None, token).
    """
    if ctx is None or not ctx.authorization:
        return None, None

    auth_type, _, auth_token = ctx.authorization.strip().partition(" ")
    auth_token = auth_token.strip()
    if auth_type.lower() == "basic":
        try:
            decoded = base64.b64decode(auth_token).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            decoded = ""
        username, _, password = decoded.partition(":")
        if username:
            return username, password
    return None, auth_token or None


def client_identity(ctx: RequestContext | None) -> str:
    """Cache key for the caller. Hashed so secrets never end up in keys or logs."""
    if ctx is None or not ctx.has_pass_through:
        return DEFAULT_IDENTITY
    username, secret = parse_authorization(ctx)
    raw = f"{username or ''}:{secret or ''}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:32]


def basic_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


class CredentialStore:
    """
    Resolves configured secrets and pass-through credentials.

    Usage:
        store = CredentialStore()
        secret = store.resolve_secret("books", entity, ctx)
    """

    def __init__(self, secret_resolver: SecretResolver | None = None):
        self._secret_resolver = secret_resolver

    def get_password(self, value: str | None, setting: str, base_entity: str) -> str:
        """
        Resolve a configured secret value.

        Args:
            value: Literal secret or an ``env:``/``file:`` reference
            setting: Dotted configuration path, used in error messages
            base_entity: Entity the secret belongs to
        """
        if not value:
            raise ConfigurationError(
                f"missing configuration entity.{base_entity}.{setting}",
                entity=base_entity,
            )

        if self._secret_resolver is not None:
            resolved = self._secret_resolver(value)
        elif value.startswith(ENV_PREFIX):
            resolved = os.environ.get(value[len(ENV_PREFIX) :])
        elif value.startswith(FILE_PREFIX):
            resolved = self._read_secret_file(value[len(FILE_PREFIX) :])
        else:
            resolved = value

        if not resolved:
            raise ConfigurationError(
                f"unable to resolve secret for entity.{base_entity}.{setting}",
                entity=base_entity,
            )
        return resolved

    @staticmethod
    def _read_secret_file(path: str) -> str | None:
        secret_path = Path(path)
        if not secret_path.is_file():
            return None
        return secret_path.read_text(encoding="utf-8").strip()

    def resolve_secret(
        self,
        base_entity: str,
        entity: EntityConfig,
        ctx: RequestContext | None = None,
    ) -> str | None:
        """
        Secret for the entity's configured auth mode.

        Pass-through credentials win over configuration. Returns None when
        the entity uses no authentication.
        """
        _, secret = parse_authorization(ctx)
        if secret:
            return secret

        if entity.basic_auth is not None:
            return self.get_password(
                entity.basic_auth.password, "basicAuth.password", base_entity
            )
        if entity.oauth is not None:
            return self.get_password(
                entity.oauth.client_secret, "oauth.clientSecret", base_entity
            )
        if entity.bearer_auth is not None:
            return self.get_password(
                entity.bearer_auth.token, "bearerAuth.token", base_entity
            )
        return None

    def proxy_authorization(self, base_entity: str, entity: EntityConfig) -> str | None:
        """Proxy-Authorization header value when the proxy needs credentials."""
        proxy = entity.proxy
        if proxy is None or not proxy.username or not proxy.password:
            return None
        password = self.get_password(proxy.password, "proxy.password", base_entity)
        return basic_header(proxy.username, password)

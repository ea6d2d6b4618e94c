"""
ServiceClientCache - connection and auth settings per (entity, client identity).

Two modes, picked by the request path:
- Relative path ("/api/v1/Books"): cached client built from entity config,
  authentication attached and base URL failover applied
- Absolute URL ("https://host/x"): one-off client, nothing cached

Callers always get a copy, never the cached record itself.
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from restplugin.config import (
    AuthMode,
    BasicAuthConfig,
    EndpointConfig,
    EntityConfig,
    HttpOptionsOverride,
)
from restplugin.exceptions import ConfigurationError, ValidationError
from restplugin.services.credentials import (
    CredentialStore,
    RequestContext,
    basic_header,
    client_identity,
)
from restplugin.services.tokens import AccessToken, TokenCache
from restplugin.settings import Settings, global_settings

JSON_CONTENT_TYPE = "application/json"


def set_header(headers: dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing key that differs only in case."""
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]
    headers[name] = value


def get_header(headers: dict[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def is_absolute_url(path: str) -> bool:
    try:
        url = httpx.URL(path)
    except httpx.InvalidURL:
        return False
    return url.scheme in ("http", "https") and bool(url.host)


def join_url(base_url: str, path: str) -> str:
    if not path or path.startswith("?"):
        return f"{base_url}{path}"
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


@dataclass(frozen=True)
class ProxySettings:
    url: str
    authorization: str | None = None


@dataclass
class HttpOptions:
    """Headers and transport settings for a request."""

    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 60.0
    verify: bool = True
    params: dict[str, Any] | None = None
    proxy: ProxySettings | None = None

    def copy(self) -> "HttpOptions":
        return HttpOptions(
            headers=dict(self.headers),
            timeout=self.timeout,
            verify=self.verify,
            params=dict(self.params) if self.params else None,
            proxy=self.proxy,
        )

    def merge(self, override: HttpOptionsOverride | None) -> None:
        """Layer configured or per-call options on top, in place."""
        if override is None:
            return
        for name, value in (override.headers or {}).items():
            set_header(self.headers, name, value)
        if override.timeout is not None:
            self.timeout = override.timeout
        if override.verify is not None:
            self.verify = override.verify
        if override.params:
            self.params = {**(self.params or {}), **override.params}

    @property
    def content_type(self) -> str | None:
        return get_header(self.headers, "Content-Type")


@dataclass
class ServiceClient:
    """Cached client record. Mutated in place on token refresh and failover."""

    base_url: str
    auth_mode: AuthMode
    options: HttpOptions
    access_token: AccessToken | None = None


@dataclass
class ClientConfig:
    """Fully resolved settings for one outgoing request."""

    method: str
    url: str
    options: HttpOptions
    base_url: str | None = None  # None for absolute-URL clients

    @property
    def scheme(self) -> str:
        return httpx.URL(self.url).scheme

    @property
    def host(self) -> str:
        return httpx.URL(self.url).host

    @property
    def port(self) -> int | None:
        return httpx.URL(self.url).port


class ServiceClientCache:
    """
    Lazily builds and caches service clients.

    Usage:
        clients = ServiceClientCache(config, credentials, tokens)
        cli = await clients.get_service_client("books", "GET", "/api/v1/Books")
    """

    def __init__(
        self,
        config: EndpointConfig,
        credentials: CredentialStore,
        tokens: TokenCache,
        settings: Settings | None = None,
    ):
        self._config = config
        self._credentials = credentials
        self._tokens = tokens
        self._settings = settings or global_settings
        self._clients: dict[tuple[str, str], ServiceClient] = {}

    def get(self, base_entity: str, identity: str) -> ServiceClient | None:
        return self._clients.get((base_entity, identity))

    def evict(self, base_entity: str, identity: str) -> bool:
        """Drop the cached client and its token so the next call rebuilds both."""
        removed = self._clients.pop((base_entity, identity), None) is not None
        self._tokens.evict(base_entity, identity)
        if removed:
            logger.debug(f"[{base_entity}] Removed cached client")
        return removed

    def clear(self) -> None:
        self._clients.clear()
        self._tokens.clear()

    def update_base_url(self, base_entity: str, identity: str, base_url: str) -> bool:
        client = self._clients.get((base_entity, identity))
        if client is None:
            return False
        client.base_url = base_url
        return True

    async def get_service_client(
        self,
        base_entity: str,
        method: str,
        path: str = "",
        options: dict[str, Any] | None = None,
        ctx: RequestContext | None = None,
    ) -> ClientConfig:
        """
        Resolve the settings for one request.

        Args:
            base_entity: Configured entity name
            method: HTTP method
            path: Path relative to the current base URL, or an absolute URL
            options: Per-call overrides (headers, timeout, verify, params);
                absolute URLs also accept ``auth: {username, password}``
            ctx: Calling context, may carry pass-through credentials

        Raises:
            ConfigurationError: Entity or required auth settings missing
            TokenError: OAuth token could not be acquired
        """
        entity = self._config.get_entity(base_entity)
        path = path or ""

        if is_absolute_url(path):
            logger.debug(
                f"[{base_entity}] Using one-off client for absolute URL"
            )
            return self._absolute_client(base_entity, entity, method, path, options)

        identity = client_identity(ctx)
        client = self._clients.get((base_entity, identity))
        if client is not None:
            logger.debug(f"[{base_entity}] Using cached client")
            await self._refresh_token(base_entity, entity, client, ctx)
        else:
            logger.debug(f"[{base_entity}] Creating service client")
            client = await self._create_client(base_entity, entity, ctx)
            self._clients[(base_entity, identity)] = client

        cli = ClientConfig(
            method=method,
            url=join_url(client.base_url, path),
            options=client.options.copy(),
            base_url=client.base_url,
        )
        cli.options.merge(self._parse_options(base_entity, options))
        return cli

    async def _refresh_token(
        self,
        base_entity: str,
        entity: EntityConfig,
        client: ServiceClient,
        ctx: RequestContext | None,
    ) -> None:
        token = client.access_token
        if token is None:
            return
        now = self._tokens.now()
        if token.is_valid(now, self._tokens.margin):
            return

        logger.debug(
            f"[{base_entity}] Access token expires in "
            f"{token.valid_to - now:.0f} seconds"
        )
        try:
            token = await self._tokens.get_access_token(base_entity, entity, ctx)
        except Exception:
            self.evict(base_entity, client_identity(ctx))
            raise
        client.access_token = token
        set_header(client.options.headers, "Authorization", token.authorization)

    async def _create_client(
        self,
        base_entity: str,
        entity: EntityConfig,
        ctx: RequestContext | None,
    ) -> ServiceClient:
        if not entity.base_urls:
            raise ConfigurationError(
                f"missing configuration entity.{base_entity}.baseUrls",
                entity=base_entity,
            )

        options = HttpOptions(
            headers={"Content-Type": JSON_CONTENT_TYPE, "Accept": JSON_CONTENT_TYPE},
            timeout=self._settings.request_timeout,
        )
        if ctx is not None and ctx.has_pass_through:
            auth_mode = AuthMode.PASS_THROUGH
        else:
            auth_mode = entity.auth_mode

        access_token = None
        if auth_mode is AuthMode.PASS_THROUGH:
            set_header(options.headers, "Authorization", ctx.authorization)
        elif auth_mode is AuthMode.BASIC:
            basic = entity.basic_auth
            if not basic.username or not basic.password:
                raise ConfigurationError(
                    f"missing configuration "
                    f"entity.{base_entity}.basicAuth.username/password",
                    entity=base_entity,
                )
            password = self._credentials.get_password(
                basic.password, "basicAuth.password", base_entity
            )
            set_header(
                options.headers, "Authorization", basic_header(basic.username, password)
            )
        elif auth_mode is AuthMode.OAUTH:
            oauth = entity.oauth
            if not oauth.client_id or not oauth.client_secret:
                raise ConfigurationError(
                    f"missing configuration "
                    f"entity.{base_entity}.oauth.clientId/clientSecret",
                    entity=base_entity,
                )
            if not oauth.tenant_id_guid and not oauth.token_url:
                raise ConfigurationError(
                    f"missing configuration "
                    f"entity.{base_entity}.oauth.tenantIdGUID/tokenUrl",
                    entity=base_entity,
                )
            access_token = await self._tokens.get_access_token(base_entity, entity, ctx)
            set_header(options.headers, "Authorization", access_token.authorization)
        elif auth_mode is AuthMode.BEARER:
            if not entity.bearer_auth.token:
                raise ConfigurationError(
                    f"missing configuration entity.{base_entity}.bearerAuth.token",
                    entity=base_entity,
                )
            token = self._credentials.get_password(
                entity.bearer_auth.token, "bearerAuth.token", base_entity
            )
            set_header(options.headers, "Authorization", f"Bearer {token}")

        options.proxy = self._proxy(base_entity, entity)
        options.merge(entity.options)

        return ServiceClient(
            base_url=entity.base_urls[0],
            auth_mode=auth_mode,
            options=options,
            access_token=access_token,
        )

    def _absolute_client(
        self,
        base_entity: str,
        entity: EntityConfig,
        method: str,
        url: str,
        options: dict[str, Any] | None,
    ) -> ClientConfig:
        http_options = HttpOptions(
            headers={"Content-Type": JSON_CONTENT_TYPE},
            timeout=self._settings.request_timeout,
            proxy=self._proxy(base_entity, entity),
        )

        opt = dict(options or {})
        auth = opt.pop("auth", None)
        if auth is not None:
            credentials = self._parse_auth(base_entity, auth)
            set_header(
                http_options.headers,
                "Authorization",
                basic_header(credentials.username, credentials.password or ""),
            )
        http_options.merge(self._parse_options(base_entity, opt))

        return ClientConfig(method=method, url=url, options=http_options)

    def _proxy(self, base_entity: str, entity: EntityConfig) -> ProxySettings | None:
        if not entity.has_proxy:
            return None
        return ProxySettings(
            url=entity.proxy.host,
            authorization=self._credentials.proxy_authorization(base_entity, entity),
        )

    @staticmethod
    def _parse_auth(base_entity: str, auth: Any) -> BasicAuthConfig:
        try:
            credentials = BasicAuthConfig.model_validate(auth)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Unsupported auth option: {e}", entity=base_entity
            ) from e
        if not credentials.username:
            raise ValidationError(
                "Unsupported auth option: username is required", entity=base_entity
            )
        return credentials

    @staticmethod
    def _parse_options(
        base_entity: str, options: dict[str, Any] | HttpOptionsOverride | None
    ) -> HttpOptionsOverride | None:
        if options is None or isinstance(options, HttpOptionsOverride):
            return options
        try:
            return HttpOptionsOverride.model_validate(options)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Unsupported request options: {e}", entity=base_entity
            ) from e

    def get_status(self) -> list[dict[str, Any]]:
        """Snapshot of cached clients for diagnostics. Identities are hashes."""
        return [
            {
                "entity": base_entity,
                "identity": identity,
                "base_url": client.base_url,
                "auth_mode": client.auth_mode.value,
                "token_valid_to": (
                    client.access_token.valid_to if client.access_token else None
                ),
                "proxy": client.options.proxy.url if client.options.proxy else None,
            }
            for (base_entity, identity), client in self._clients.items()
        ]

"""
TokenCache - OAuth client-credentials tokens, one per (entity, client identity).

A single lock serializes every acquisition in the process, so concurrent
callers for the same key share one token request: the first one fetches,
the rest find the fresh token in the cache once the lock is released.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx
from loguru import logger

from restplugin.config import EntityConfig
from restplugin.exceptions import ConfigurationError, HttpError, TokenError
from restplugin.services.credentials import (
    CredentialStore,
    RequestContext,
    client_identity,
)
from restplugin.settings import Settings, global_settings

if TYPE_CHECKING:
    from restplugin.services.executor import Response

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# (base_entity, token_url, form, ctx) -> Response
TokenRequester = Callable[
    [str, str, dict[str, str], RequestContext | None], Awaitable["Response"]
]


@dataclass(frozen=True)
class AccessToken:
    """Bearer token with an absolute expiry in unix seconds."""

    access_token: str
    valid_to: float

    def is_valid(self, now: float, margin: float = 30) -> bool:
        return self.valid_to >= now + margin

    @property
    def authorization(self) -> str:
        return f"Bearer {self.access_token}"


class TokenCache:
    """
    Access-token cache with serialized acquisition.

    Usage:
        tokens = TokenCache(credentials, requester=send_token_request)
        token = await tokens.get_access_token("books", entity, ctx)
    """

    def __init__(
        self,
        credentials: CredentialStore,
        requester: TokenRequester,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._credentials = credentials
        self._requester = requester
        self._settings = settings or global_settings
        self._clock = clock
        self._tokens: dict[tuple[str, str], AccessToken] = {}
        self._lock = asyncio.Lock()

    @property
    def margin(self) -> int:
        return self._settings.token_expiry_margin

    def now(self) -> float:
        return self._clock()

    def get(self, base_entity: str, identity: str) -> AccessToken | None:
        return self._tokens.get((base_entity, identity))

    def evict(self, base_entity: str, identity: str) -> bool:
        """Drop a cached token. Returns True if one was present."""
        return self._tokens.pop((base_entity, identity), None) is not None

    def clear(self) -> None:
        self._tokens.clear()

    def token_url(self, entity: EntityConfig) -> str:
        """Tenant-specific endpoint when a tenant GUID is set, else tokenUrl."""
        oauth = entity.oauth
        authority = self._settings.token_authority.rstrip("/")
        if oauth.tenant_id_guid:
            return f"{authority}/{oauth.tenant_id_guid}/oauth2/token"
        token_url = oauth.token_url or ""
        if token_url.startswith(("http://", "https://")):
            return token_url
        return f"{authority}/{token_url.lstrip('/')}"

    @staticmethod
    def resource(entity: EntityConfig) -> str | None:
        """Origin of the first base URL, sent as the token ``resource``."""
        if not entity.base_urls:
            return None
        try:
            url = httpx.URL(entity.base_urls[0])
        except httpx.InvalidURL:
            return None
        if not url.scheme or not url.host:
            return None
        port = f":{url.port}" if url.port else ""
        return f"{url.scheme}://{url.host}{port}"

    async def get_access_token(
        self,
        base_entity: str,
        entity: EntityConfig,
        ctx: RequestContext | None = None,
    ) -> AccessToken:
        """
        Return a valid token for (entity, identity), fetching one if needed.

        Raises:
            ConfigurationError: Entity has no usable oauth configuration
            TokenError: Token endpoint returned an error or malformed body
        """
        identity = client_identity(ctx)
        key = (base_entity, identity)

        async with self._lock:
            cached = self._tokens.get(key)
            if cached and cached.is_valid(self.now(), self.margin):
                return cached

            if entity.oauth is None or not entity.oauth.client_id:
                raise ConfigurationError(
                    f"missing configuration entity.{base_entity}.oauth.clientId",
                    entity=base_entity,
                )
            if not entity.oauth.tenant_id_guid and not entity.oauth.token_url:
                raise ConfigurationError(
                    f"missing configuration "
                    f"entity.{base_entity}.oauth.tenantIdGUID/tokenUrl",
                    entity=base_entity,
                )

            logger.debug(f"[{base_entity}] Retrieving access token")
            token = await self._request_token(base_entity, entity, ctx)
            self._tokens[key] = token
            return token

    async def _request_token(
        self,
        base_entity: str,
        entity: EntityConfig,
        ctx: RequestContext | None,
    ) -> AccessToken:
        token_url = self.token_url(entity)
        form = {
            "grant_type": "client_credentials",
            "client_id": entity.oauth.client_id,
            "client_secret": self._credentials.resolve_secret(base_entity, entity, ctx)
            or "",
        }
        resource = self.resource(entity)
        if resource:
            form["resource"] = resource

        try:
            response = await self._requester(base_entity, token_url, form, ctx)
        except HttpError as e:
            raise TokenError(
                f"Token request failed: {_describe_error(e.body) or e}",
                entity=base_entity,
                status_code=e.status_code,
            ) from e

        token = self.parse_token_response(base_entity, token_url, response.body)
        logger.trace(
            f"[{base_entity}] Access token = {token.access_token}"
        )
        return token

    def parse_token_response(
        self, base_entity: str, token_url: str, body: Any
    ) -> AccessToken:
        """Validate a token endpoint body and compute the absolute expiry."""
        if not body:
            raise TokenError(
                f"Token request returned no data: POST {token_url}",
                entity=base_entity,
            )
        if not isinstance(body, dict):
            raise TokenError(
                "Token response lacks access_token or expires_in",
                entity=base_entity,
            )
        if body.get("error"):
            raise TokenError(
                f"Token request failed: {_describe_error(body)}",
                entity=base_entity,
            )
        if not body.get("access_token") or not body.get("expires_in"):
            raise TokenError(
                "Token response lacks access_token or expires_in",
                entity=base_entity,
            )

        try:
            expires_in = int(body["expires_in"])
        except (TypeError, ValueError) as e:
            raise TokenError(
                f"Token request failed: invalid expires_in "
                f"{body['expires_in']!r}",
                entity=base_entity,
            ) from e

        # expires_on is ignored, local and server clocks may disagree
        return AccessToken(
            access_token=body["access_token"],
            valid_to=self.now() + expires_in,
        )


def _describe_error(body: Any) -> str | None:
    if isinstance(body, dict) and body.get("error"):
        return body.get("error_description") or str(body["error"])
    return None

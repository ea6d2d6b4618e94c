"""
EndpointClient - outbound request engine for the configured REST endpoints.

Combines:
- CredentialStore for configured and pass-through secrets
- TokenCache for OAuth client-credentials tokens
- ServiceClientCache for per-caller connection settings
- RequestExecutor and RetryController for the HTTP call itself
"""

import asyncio
import time
from typing import Any, Callable

import httpx
from loguru import logger

from restplugin.config import EndpointConfig, load_endpoint_config
from restplugin.services.client_cache import ServiceClientCache
from restplugin.services.credentials import (
    CredentialStore,
    RequestContext,
    SecretResolver,
    client_identity,
)
from restplugin.services.executor import RequestExecutor, Response
from restplugin.services.retry import RetryController, Sleep
from restplugin.services.tokens import FORM_CONTENT_TYPE, TokenCache
from restplugin.settings import Settings, global_settings


class EndpointClient:
    """
    Request engine shared by all operation handlers.

    Usage:
        client = EndpointClient(load_endpoint_config("config/plugin-api.json"))

        response = await client.request("books", "GET", "/api/v1/Books/1")
        print(response.status_code, response.body)

        # Absolute URLs bypass the cache and are not retried
        await client.request(
            "books",
            "GET",
            "https://other.example.com/health",
            options={"auth": {"username": "u", "password": "p"}},
        )
    """

    def __init__(
        self,
        config: EndpointConfig,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        secret_resolver: SecretResolver | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._settings = settings or global_settings

        self.credentials = CredentialStore(secret_resolver)
        self.tokens = TokenCache(
            self.credentials,
            requester=self._request_token,
            settings=self._settings,
            clock=clock,
        )
        self.clients = ServiceClientCache(
            config, self.credentials, self.tokens, settings=self._settings
        )
        self.executor = RequestExecutor(settings=self._settings, transport=transport)
        self.controller = RetryController(
            config,
            self.clients,
            self.executor,
            settings=self._settings,
            sleep=sleep,
        )

    @property
    def config(self) -> EndpointConfig:
        return self._config

    async def request(
        self,
        base_entity: str,
        method: str,
        path: str,
        body: Any = None,
        ctx: RequestContext | None = None,
        options: dict[str, Any] | None = None,
    ) -> Response:
        """
        Send a request to an entity with auth, throttle retries and failover.

        Args:
            base_entity: Configured entity name
            method: HTTP method
            path: Path relative to the entity's base URL, or an absolute URL
            body: JSON-serializable body (form-encoded when the Content-Type
                option says so)
            ctx: Calling context with optional pass-through Authorization
            options: Per-call headers, timeout, verify, params

        Returns:
            Response with the parsed body
        """
        return await self.controller.do_request(
            base_entity, method, path, body, ctx, options
        )

    async def _request_token(
        self,
        base_entity: str,
        token_url: str,
        form: dict[str, str],
        ctx: RequestContext | None,
    ) -> Response:
        return await self.controller.do_request(
            base_entity,
            "POST",
            token_url,
            form,
            ctx,
            options={"headers": {"Content-Type": FORM_CONTENT_TYPE}},
        )

    def evict(self, base_entity: str, ctx: RequestContext | None = None) -> bool:
        """Forget the cached client and token for the caller."""
        return self.clients.evict(base_entity, client_identity(ctx))

    def get_status(self) -> dict[str, Any]:
        """Cached clients per entity, for diagnostics."""
        return {
            "entities": sorted(self._config.entity),
            "clients": self.clients.get_status(),
        }

    async def close(self) -> None:
        """Close HTTP connections and drop cached clients."""
        await self.executor.close()
        self.clients.clear()
        logger.debug("EndpointClient closed")

    async def __aenter__(self) -> "EndpointClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# Global client instance
_global_client: EndpointClient | None = None


def get_endpoint_client() -> EndpointClient:
    """Get the global endpoint client, loading configuration on first use."""
    global _global_client
    if _global_client is None:
        config = load_endpoint_config(global_settings.endpoint_config_path)
        _global_client = EndpointClient(config)
    return _global_client


async def close_endpoint_client() -> None:
    """Close the global endpoint client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None

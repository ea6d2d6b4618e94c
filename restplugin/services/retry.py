"""
RetryController - rate-limit backoff and base URL failover around one request.

Attempt loop, with one retry budget equal to the number of base URLs:
- Rate limited (429 or a throttle pattern in the error): wait, then retry on
  the current base URL.
- Connection failure (refused, host not found, timeout): switch to the next
  untried base URL in config order and retry. One pass, N base URLs give
  N attempts.
- Budget spent: the last error is raised.
- 401: cached client evicted, no retry.
- Anything else: raised as-is.

Absolute-URL requests are never retried.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger

from restplugin.config import EndpointConfig
from restplugin.exceptions import (
    HttpError,
    PluginError,
    RateLimitError,
    ServiceConnectionError,
)
from restplugin.services.client_cache import ServiceClientCache, is_absolute_url
from restplugin.services.credentials import RequestContext, client_identity
from restplugin.services.executor import RequestExecutor, Response
from restplugin.settings import Settings, global_settings

Sleep = Callable[[float], Awaitable[Any]]


class RateLimitDetector:
    """
    Recognizes throttling that does not arrive as a standard 429.

    Some services answer with a 5xx and a message only, so the error text
    and body are matched against configured substrings, case-insensitively.
    """

    def __init__(self, patterns: Iterable[str] = ("ratelimit",)):
        self.patterns = tuple(p.lower() for p in patterns if p)

    def __call__(self, error: PluginError) -> bool:
        if isinstance(error, RateLimitError):
            return True
        if not self.patterns:
            return False
        text = str(error)
        if isinstance(error, HttpError):
            text = f"{text} {error.body_text}"
        text = text.lower()
        return any(pattern in text for pattern in self.patterns)


class RetryController:
    """
    Wraps RequestExecutor with throttle waits and failover.

    Usage:
        controller = RetryController(config, clients, executor)
        response = await controller.do_request("books", "GET", "/api/v1/Books")
    """

    def __init__(
        self,
        config: EndpointConfig,
        clients: ServiceClientCache,
        executor: RequestExecutor,
        settings: Settings | None = None,
        detector: Callable[[PluginError], bool] | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._config = config
        self._clients = clients
        self._executor = executor
        self._settings = settings or global_settings
        self._detector = detector or RateLimitDetector(
            self._settings.rate_limit_pattern_list
        )
        self._sleep = sleep

    async def do_request(
        self,
        base_entity: str,
        method: str,
        path: str,
        body: Any = None,
        ctx: RequestContext | None = None,
        options: dict[str, Any] | None = None,
    ) -> Response:
        """
        Execute a request with throttle retries and base URL failover.

        Raises:
            ConfigurationError, ValidationError, TokenError: While building
                the client, never retried
            HttpError: Non-2xx response that was not retried away
            ServiceConnectionError: All base URLs failed
        """
        base_urls = self._config.get_entity(base_entity).base_urls
        identity = client_identity(ctx)
        retryable = not is_absolute_url(path or "")
        tried: list[str] = []
        # Shared by throttle waits and failover, bounded by the base URL count
        retries = 0

        while True:
            cli = await self._clients.get_service_client(
                base_entity, method, path, options, ctx
            )
            if cli.base_url and cli.base_url not in tried:
                tried.append(cli.base_url)
            try:
                return await self._executor.do_request_once(
                    cli, body, base_entity=base_entity
                )
            except PluginError as e:
                self._log_failure(base_entity, method, cli.url, e)

                if isinstance(e, HttpError) and e.status_code == 401:
                    self._clients.evict(base_entity, identity)
                    raise

                if not retryable:
                    raise

                if retries >= len(base_urls):
                    raise

                retry_after = self._retry_after(e)
                if retry_after is not None:
                    retries += 1
                    logger.debug(
                        f"[{base_entity}] {method} {path} throttled, "
                        f"retrying in {retry_after} seconds"
                    )
                    await self._sleep(retry_after)
                    continue

                if isinstance(e, ServiceConnectionError) and e.kind.failover:
                    remaining = [url for url in base_urls if url not in tried]
                    if not remaining:
                        raise
                    retries += 1
                    next_url = remaining[0]
                    self._clients.update_base_url(base_entity, identity, next_url)
                    logger.debug(
                        f"[{base_entity}] failover retry[{retries}] "
                        f"using base URL {next_url}"
                    )
                    continue

                raise

    def _retry_after(self, error: PluginError) -> float | None:
        if isinstance(error, RateLimitError) and error.retry_after:
            return error.retry_after
        if self._detector(error):
            return self._settings.rate_limit_wait
        return None

    @staticmethod
    def _log_failure(
        base_entity: str, method: str, url: str, error: PluginError
    ) -> None:
        message = f"[{base_entity}] {method} {url} failed: {error}"
        if isinstance(error, ServiceConnectionError):
            message = f"{message} ({error.detail})"
        # 404 is a normal outcome for lookups, the caller decides
        if isinstance(error, HttpError) and error.status_code == 404:
            logger.debug(message)
        else:
            logger.error(message)

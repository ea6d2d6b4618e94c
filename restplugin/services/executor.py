"""
RequestExecutor - performs exactly one HTTP call for a resolved client config.

No retries here: failures are classified and raised for the controller.
"""

import json
import socket
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx
from loguru import logger

from restplugin.exceptions import (
    ConnectionKind,
    HttpError,
    RateLimitError,
    ServiceConnectionError,
)
from restplugin.services.client_cache import ClientConfig, HttpOptions, set_header
from restplugin.services.tokens import FORM_CONTENT_TYPE
from restplugin.settings import Settings, global_settings

HOST_NOT_FOUND_PATTERNS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
)


@dataclass
class Response:
    """Downstream response with the body parsed as JSON when possible."""

    status_code: int
    status_message: str
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


def classify_transport_error(error: BaseException) -> ConnectionKind:
    """Map an httpx transport failure onto a connection category."""
    if isinstance(error, httpx.TimeoutException):
        return ConnectionKind.TIMEOUT

    cause: BaseException | None = error
    for _ in range(10):
        if cause is None:
            break
        if isinstance(cause, socket.gaierror):
            return ConnectionKind.HOST_NOT_FOUND
        if isinstance(cause, ConnectionRefusedError):
            return ConnectionKind.REFUSED
        cause = cause.__cause__ or cause.__context__

    message = str(error).lower()
    if any(pattern in message for pattern in HOST_NOT_FOUND_PATTERNS):
        return ConnectionKind.HOST_NOT_FOUND
    if isinstance(error, httpx.ConnectError):
        return ConnectionKind.REFUSED
    return ConnectionKind.OTHER


class RequestExecutor:
    """
    Single-shot HTTP execution on pooled httpx clients.

    One ``httpx.AsyncClient`` is kept per proxy/TLS combination, since both
    are fixed when the client is constructed.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings or global_settings
        self._transport = transport
        self._http_clients: dict[tuple[Any, ...], httpx.AsyncClient] = {}

    def _get_http_client(self, options: HttpOptions) -> httpx.AsyncClient:
        """Get or create the HTTP client for these transport settings."""
        proxy = options.proxy
        key = (
            proxy.url if proxy else None,
            proxy.authorization if proxy else None,
            options.verify,
        )
        client = self._http_clients.get(key)
        if client is None:
            kwargs: dict[str, Any] = {}
            if proxy is not None:
                headers = (
                    {"Proxy-Authorization": proxy.authorization}
                    if proxy.authorization
                    else None
                )
                kwargs["proxy"] = httpx.Proxy(proxy.url, headers=headers)
            if self._transport is not None:
                kwargs["transport"] = self._transport
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.request_timeout),
                verify=options.verify,
                **kwargs,
            )
            self._http_clients[key] = client
        return client

    @staticmethod
    def serialize_body(body: Any, content_type: str | None) -> bytes | None:
        """JSON by default, query-string syntax for form-encoded requests."""
        if body is None:
            return None
        media_type = (content_type or "").split(";")[0].strip().lower()
        if media_type == FORM_CONTENT_TYPE:
            data = body if isinstance(body, str) else urlencode(body, doseq=True)
        else:
            data = json.dumps(body)
        return data.encode("utf-8")

    @staticmethod
    def parse_body(text: str) -> Any:
        """JSON when it parses, otherwise the raw text."""
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text

    def retry_after(self, value: str | None) -> int:
        """Seconds to wait for a 429: header value plus one, else the fallback."""
        if value is None:
            return self._settings.retry_after_fallback
        try:
            seconds = int(float(value))
        except (ValueError, OverflowError):
            # HTTP-date form
            return self._settings.retry_after_fallback
        if seconds < 0:
            return self._settings.retry_after_fallback
        return seconds + 1

    async def do_request_once(
        self,
        cli: ClientConfig,
        body: Any = None,
        base_entity: str | None = None,
    ) -> Response:
        """
        Execute one request.

        Raises:
            RateLimitError: 429 with the retry hint attached
            HttpError: Any other status outside 200-299
            ServiceConnectionError: Transport failure or timeout
        """
        headers = dict(cli.options.headers)
        content = self.serialize_body(body, cli.options.content_type)
        if content is not None:
            set_header(headers, "Content-Length", str(len(content)))

        client = self._get_http_client(cli.options)
        try:
            response = await client.request(
                cli.method,
                cli.url,
                content=content,
                headers=headers,
                params=cli.options.params,
                timeout=cli.options.timeout,
            )
        except httpx.RequestError as e:
            kind = classify_transport_error(e)
            raise ServiceConnectionError(
                kind,
                detail=str(e) or type(e).__name__,
                entity=base_entity,
                url=cli.url,
            ) from e

        result = Response(
            status_code=response.status_code,
            status_message=response.reason_phrase,
            body=self.parse_body(response.text),
            headers=dict(response.headers),
        )
        logger.debug(
            f"[{base_entity}] {cli.method} {cli.url} "
            f"-> {result.status_code} {result.status_message}"
        )

        if not 200 <= result.status_code <= 299:
            if result.status_code == 429:
                raise RateLimitError(
                    result.status_code,
                    result.status_message,
                    result.body,
                    entity=base_entity,
                    retry_after=self.retry_after(response.headers.get("retry-after")),
                )
            raise HttpError(
                result.status_code,
                result.status_message,
                result.body,
                entity=base_entity,
            )
        return result

    async def close(self) -> None:
        """Close all pooled HTTP clients."""
        for client in self._http_clients.values():
            await client.aclose()
        self._http_clients.clear()

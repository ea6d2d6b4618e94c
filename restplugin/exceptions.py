"""
Plugin exceptions and error classification.
"""

import json
from enum import Enum
from typing import Any


class PluginError(Exception):
    """Base exception for plugin errors."""

    def __init__(self, message: str, entity: str | None = None):
        self.entity = entity
        super().__init__(message)


class ConfigurationError(PluginError):
    """Required configuration is missing or malformed. Never retried."""

    pass


class ValidationError(PluginError):
    """Caller supplied content the plugin cannot map."""

    pass


class TokenError(PluginError):
    """Token endpoint returned an error or an unusable response."""

    def __init__(
        self,
        message: str,
        entity: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, entity=entity)


class HttpError(PluginError):
    """Downstream service answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        status_message: str,
        body: Any = None,
        entity: str | None = None,
    ):
        self.status_code = status_code
        self.status_message = status_message
        self.body = body
        super().__init__(
            f"HTTP {status_code} {status_message}: {self.body_text[:200]}",
            entity=entity,
        )

    @property
    def body_text(self) -> str:
        if self.body is None:
            return ""
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body)


class RateLimitError(HttpError):
    """Throttled by the downstream service."""

    def __init__(
        self,
        status_code: int,
        status_message: str,
        body: Any = None,
        entity: str | None = None,
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(status_code, status_message, body, entity=entity)


class ConnectionKind(str, Enum):
    """Transport failure categories."""

    REFUSED = "REFUSED"
    HOST_NOT_FOUND = "HOST_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    OTHER = "OTHER"

    @property
    def failover(self) -> bool:
        return self is not ConnectionKind.OTHER


# Stable messages returned instead of transport wording
CONNECTION_MESSAGES: dict[ConnectionKind, str] = {
    ConnectionKind.REFUSED: "UnableConnectingService",
    ConnectionKind.HOST_NOT_FOUND: "UnableConnectingHost",
    ConnectionKind.TIMEOUT: "ServiceTimeout",
    ConnectionKind.OTHER: "ServiceConnectionFailed",
}


class ServiceConnectionError(PluginError):
    """Transport-level failure. The raw cause is kept in ``detail``."""

    def __init__(
        self,
        kind: ConnectionKind,
        detail: str = "",
        entity: str | None = None,
        url: str | None = None,
    ):
        self.kind = kind
        self.detail = detail
        self.url = url
        super().__init__(CONNECTION_MESSAGES[kind], entity=entity)

"""
Outbound request engine - authentication, caching, retry and failover for
calls to the configured REST endpoints.

Provides:
- CredentialStore: Configured and pass-through secrets
- TokenCache: OAuth client-credentials tokens with serialized acquisition
- ServiceClientCache: Per-caller connection settings
- RequestExecutor: One HTTP call, response parsing and error classification
- RetryController: Throttle backoff and base URL failover
- EndpointClient: Facade combining all of the above
"""

from restplugin.services.credentials import (
    CredentialStore,
    RequestContext,
    client_identity,
)
from restplugin.services.tokens import AccessToken, TokenCache
from restplugin.services.client_cache import (
    ClientConfig,
    HttpOptions,
    ServiceClient,
    ServiceClientCache,
)
from restplugin.services.executor import RequestExecutor, Response
from restplugin.services.retry import RateLimitDetector, RetryController
from restplugin.services.client import (
    EndpointClient,
    close_endpoint_client,
    get_endpoint_client,
)

__all__ = [
    # Credentials
    "CredentialStore",
    "RequestContext",
    "client_identity",
    # Tokens
    "AccessToken",
    "TokenCache",
    # Client cache
    "ClientConfig",
    "HttpOptions",
    "ServiceClient",
    "ServiceClientCache",
    # Execution
    "RequestExecutor",
    "Response",
    "RateLimitDetector",
    "RetryController",
    # Facade
    "EndpointClient",
    "close_endpoint_client",
    "get_endpoint_client",
]

"""Shared fixtures: endpoint configuration, fake clock/sleep, mocked HTTP."""

from typing import Callable

import httpx
import pytest

from restplugin.config import EndpointConfig
from restplugin.services.client import EndpointClient
from restplugin.settings import Settings

NOW = 1_700_000_000.0


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested waits instead of sleeping."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class RecordingHandler:
    """httpx.MockTransport handler that keeps every request it sees."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def hosts(self) -> list[str]:
        return [r.url.host for r in self.requests]


def json_response(status_code: int = 200, body=None, **kwargs) -> httpx.Response:
    return httpx.Response(status_code, json=body, **kwargs)


ENDPOINT_CONFIG = {
    "entity": {
        "books": {
            "baseUrls": ["http://books.example.com"],
            "basicAuth": {"username": "svc", "password": "secret"},
        },
        "failover": {
            "baseUrls": [
                "http://a.example.com",
                "http://b.example.com",
                "http://c.example.com",
            ],
        },
        "azure": {
            "baseUrls": ["https://graph.example.com/v1.0"],
            "oauth": {
                "clientId": "client-1",
                "clientSecret": "client-secret",
                "tenantIdGUID": "tenant-1",
            },
        },
        "bearer": {
            "baseUrls": ["https://bearer.example.com"],
            "bearerAuth": {"token": "static-token"},
        },
        "proxied": {
            "baseUrls": ["https://proxied.example.com"],
            "proxy": {
                "host": "http://proxy.example.com:3128",
                "username": "proxyuser",
                "password": "proxypass",
            },
        },
        "tuned": {
            "baseUrls": ["http://tuned.example.com"],
            "options": {"timeout": 5, "headers": {"User-Agent": "restplugin-test"}},
        },
        "nourls": {"baseUrls": []},
        "halfbasic": {
            "baseUrls": ["http://half.example.com"],
            "basicAuth": {"username": "svc"},
        },
        "halfoauth": {
            "baseUrls": ["http://halfoauth.example.com"],
            "oauth": {"clientId": "client-1"},
        },
        "notokenurl": {
            "baseUrls": ["http://notokenurl.example.com"],
            "oauth": {"clientId": "client-1", "clientSecret": "client-secret"},
        },
    }
}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        request_timeout=60.0,
        token_expiry_margin=30,
        retry_after_fallback=10,
        rate_limit_wait=60,
        rate_limit_patterns="ratelimit",
        token_authority="https://login.example.com",
    )


@pytest.fixture
def endpoint_config() -> EndpointConfig:
    return EndpointConfig.model_validate(ENDPOINT_CONFIG)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def make_client(endpoint_config, settings, clock, sleep):
    """Build an EndpointClient whose HTTP traffic goes to ``handler``."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> tuple[EndpointClient, RecordingHandler]:
        recorder = RecordingHandler(handler)
        client = EndpointClient(
            endpoint_config,
            settings=settings,
            transport=httpx.MockTransport(recorder),
            sleep=sleep,
            clock=clock,
        )
        return client, recorder

    return factory

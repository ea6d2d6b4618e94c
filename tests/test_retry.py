"""Unit tests for throttle retries and base URL failover."""

import httpx
import pytest

from restplugin.exceptions import (
    ConfigurationError,
    HttpError,
    RateLimitError,
    ServiceConnectionError,
)
from restplugin.services import client as client_module
from restplugin.services.credentials import DEFAULT_IDENTITY
from restplugin.services.retry import RateLimitDetector, RetryController
from tests.conftest import json_response


def refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("[Errno 111] Connection refused")


def refuse_hosts(*hosts: str):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host in hosts:
            return refuse(request)
        return json_response(200, {"host": request.url.host})

    return handler


def sequence(*responses: httpx.Response):
    pending = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        return pending.pop(0) if len(pending) > 1 else pending[0]

    return handler


class TestFailover:
    """Tests for connection failures across base URLs."""

    @pytest.mark.asyncio
    async def test_single_base_url_not_retried(self, make_client) -> None:
        """Test one base URL means one attempt and a stable message."""
        client, recorder = make_client(refuse)

        with pytest.raises(ServiceConnectionError, match="UnableConnectingService"):
            await client.request("books", "GET", "/api/v1/Books")

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_each_base_url_tried_once(self, make_client) -> None:
        """Test N base URLs give exactly N attempts in configured order."""
        client, recorder = make_client(refuse)

        with pytest.raises(ServiceConnectionError):
            await client.request("failover", "GET", "/status")

        assert recorder.hosts == ["a.example.com", "b.example.com", "c.example.com"]

    @pytest.mark.asyncio
    async def test_failover_success_is_sticky(self, make_client) -> None:
        """Test the cached client keeps the base URL that worked."""
        client, recorder = make_client(refuse_hosts("a.example.com"))

        response = await client.request("failover", "GET", "/status")
        await client.request("failover", "GET", "/status")

        assert response.body == {"host": "b.example.com"}
        assert recorder.hosts == ["a.example.com", "b.example.com", "b.example.com"]
        cached = client.clients.get("failover", DEFAULT_IDENTITY)
        assert cached.base_url == "http://b.example.com"

    @pytest.mark.asyncio
    async def test_attempts_bounded_after_earlier_failover(self, make_client) -> None:
        """Test a client already moved off the first URL still gets N attempts."""
        down = {"a.example.com"}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host in down:
                return refuse(request)
            return json_response()

        client, recorder = make_client(handler)
        await client.request("failover", "GET", "/status")
        down.update({"b.example.com", "c.example.com"})
        recorder.requests.clear()

        with pytest.raises(ServiceConnectionError):
            await client.request("failover", "GET", "/status")

        assert recorder.hosts == ["b.example.com", "a.example.com", "c.example.com"]

    @pytest.mark.asyncio
    async def test_unknown_host_message(self, make_client) -> None:
        """Test resolver failures surface as UnableConnectingHost."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("[Errno -2] Name or service not known")

        client, recorder = make_client(handler)

        with pytest.raises(ServiceConnectionError) as exc_info:
            await client.request("failover", "GET", "/status")

        assert str(exc_info.value) == "UnableConnectingHost"
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_unclassified_failure_not_retried(self, make_client) -> None:
        """Test protocol errors do not trigger failover."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.RemoteProtocolError("peer closed connection")

        client, recorder = make_client(handler)

        with pytest.raises(ServiceConnectionError, match="ServiceConnectionFailed"):
            await client.request("failover", "GET", "/status")

        assert len(recorder.requests) == 1


class TestThrottling:
    """Tests for rate-limit waits."""

    @pytest.mark.asyncio
    async def test_retry_after_header(self, make_client, sleep) -> None:
        """Test retry-after 5 waits 6 seconds and retries the same base URL."""
        client, recorder = make_client(
            sequence(
                json_response(429, {}, headers={"retry-after": "5"}),
                json_response(200, {"ok": True}),
            )
        )

        response = await client.request("failover", "GET", "/status")

        assert response.body == {"ok": True}
        assert sleep.calls == [6]
        assert recorder.hosts == ["a.example.com", "a.example.com"]

    @pytest.mark.asyncio
    async def test_throttle_pattern_in_error(self, make_client, sleep) -> None:
        """Test a 5xx mentioning the rate limit waits the configured time."""
        client, recorder = make_client(
            sequence(
                json_response(500, {"message": "RateLimit exceeded"}),
                json_response(200, {"ok": True}),
            )
        )

        await client.request("books", "GET", "/api/v1/Books")

        assert sleep.calls == [60]
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_throttle_retries_bounded(self, make_client, sleep) -> None:
        """Test throttle retries stop after one per base URL."""
        client, recorder = make_client(lambda r: json_response(429, {}))

        with pytest.raises(RateLimitError):
            await client.request("books", "GET", "/api/v1/Books")

        assert len(recorder.requests) == 2
        assert sleep.calls == [10]

    @pytest.mark.asyncio
    async def test_throttle_retries_share_budget_with_failover(
        self, make_client, sleep
    ) -> None:
        """Test failover and throttle retries draw on one budget."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "a.example.com":
                return refuse(request)
            return json_response(429, {}, headers={"retry-after": "1"})

        client, recorder = make_client(handler)

        with pytest.raises(RateLimitError):
            await client.request("failover", "GET", "/status")

        # one failover plus two throttle waits uses the budget of three
        assert recorder.hosts == [
            "a.example.com",
            "b.example.com",
            "b.example.com",
            "b.example.com",
        ]
        assert sleep.calls == [2, 2]

    @pytest.mark.asyncio
    async def test_throttle_only_budget(self, make_client, sleep) -> None:
        """Test throttle retries alone stop after one per base URL."""
        client, recorder = make_client(lambda r: json_response(429, {}))

        with pytest.raises(RateLimitError):
            await client.request("failover", "GET", "/status")

        assert recorder.hosts == ["a.example.com"] * 4
        assert sleep.calls == [10, 10, 10]

    @pytest.mark.asyncio
    async def test_custom_detector(self, make_client, settings, sleep) -> None:
        """Test hosts can plug in their own throttle detection."""
        client, recorder = make_client(
            sequence(json_response(503, {}), json_response(200, {"ok": True}))
        )
        controller = RetryController(
            client.config,
            client.clients,
            client.executor,
            settings=settings,
            detector=lambda e: isinstance(e, HttpError) and e.status_code == 503,
            sleep=sleep,
        )

        response = await controller.do_request("books", "GET", "/api/v1/Books")

        assert response.body == {"ok": True}
        assert sleep.calls == [60]

    def test_detector_patterns(self) -> None:
        """Test message and body matching is case-insensitive."""
        detector = RateLimitDetector(["ratelimit", "too many"])

        assert detector(HttpError(500, "Internal Server Error", "RATELIMIT hit"))
        assert detector(HttpError(503, "Too Many Requests"))
        assert detector(RateLimitError(429, "Too Many Requests"))
        assert not detector(HttpError(500, "Internal Server Error", {"e": "x"}))
        assert not RateLimitDetector([])(HttpError(500, "ratelimit"))


class TestTerminalErrors:
    """Tests for failures that are never retried."""

    @pytest.mark.asyncio
    async def test_unauthorized_evicts_client(self, make_client, sleep) -> None:
        """Test a 401 drops the cached client and is raised."""
        client, recorder = make_client(lambda r: json_response(401, {}))

        with pytest.raises(HttpError) as exc_info:
            await client.request("books", "GET", "/api/v1/Books")

        assert exc_info.value.status_code == 401
        assert client.clients.get("books", DEFAULT_IDENTITY) is None
        assert len(recorder.requests) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_not_found_raised(self, make_client) -> None:
        """Test a 404 reaches the caller after one attempt."""
        client, recorder = make_client(lambda r: json_response(404, {}))

        with pytest.raises(HttpError) as exc_info:
            await client.request("failover", "GET", "/missing")

        assert exc_info.value.status_code == 404
        assert len(recorder.requests) == 1
        assert client.clients.get("failover", DEFAULT_IDENTITY) is not None

    @pytest.mark.asyncio
    async def test_absolute_url_not_retried(self, make_client, sleep) -> None:
        """Test absolute URLs get neither failover nor throttle retries."""
        client, recorder = make_client(refuse)

        with pytest.raises(ServiceConnectionError):
            await client.request("failover", "GET", "https://elsewhere.example.com/x")

        client429, recorder429 = make_client(lambda r: json_response(429, {}))
        with pytest.raises(RateLimitError):
            await client429.request(
                "failover", "GET", "https://elsewhere.example.com/x"
            )

        assert len(recorder.requests) == 1
        assert len(recorder429.requests) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_configuration_error_not_retried(self, make_client) -> None:
        """Test client construction failures propagate without requests."""
        client, recorder = make_client(lambda r: json_response())

        with pytest.raises(ConfigurationError):
            await client.request("halfbasic", "GET", "/x")

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_token_endpoint_down(self, make_client) -> None:
        """Test an unreachable token endpoint is tried once."""
        client, recorder = make_client(refuse)

        with pytest.raises(ServiceConnectionError):
            await client.request("azure", "GET", "/users")

        assert recorder.hosts == ["login.example.com"]


class TestEndpointClient:
    """Tests for the facade lifecycle."""

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, make_client) -> None:
        """Test leaving the context drops cached clients."""
        client, _ = make_client(lambda r: json_response())

        async with client:
            await client.request("books", "GET", "/api/v1/Books")
            assert len(client.get_status()["clients"]) == 1

        assert client.get_status()["clients"] == []

    @pytest.mark.asyncio
    async def test_evict(self, make_client) -> None:
        """Test explicit eviction for the default caller."""
        client, _ = make_client(lambda r: json_response())

        await client.request("books", "GET", "/api/v1/Books")

        assert client.evict("books") is True
        assert client.evict("books") is False

    @pytest.mark.asyncio
    async def test_global_client(self, monkeypatch, endpoint_config) -> None:
        """Test the process-wide client is built once and can be closed."""
        monkeypatch.setattr(client_module, "_global_client", None)
        monkeypatch.setattr(
            client_module, "load_endpoint_config", lambda path: endpoint_config
        )

        first = client_module.get_endpoint_client()

        assert client_module.get_endpoint_client() is first

        await client_module.close_endpoint_client()

        assert client_module._global_client is None

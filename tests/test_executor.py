"""Tests for the resilient request executor."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from order_bridge.api.credentials import AccessToken
from order_bridge.api.executor import ApiRequest, RequestExecutor, is_retryable_status
from order_bridge.core.errors import AuthError, RequestError, TransientNetworkError

BASE_URL = "https://api.test"


def scripted_transport(statuses, calls):
    """Answer each call with the next status code (the last one repeats)."""

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        status = statuses[min(len(calls), len(statuses)) - 1]
        if status == "timeout":
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(status, json={"ok": status < 400})

    return httpx.MockTransport(handler)


def make_executor(statuses, calls, sleeper, credentials=None, **kwargs):
    return RequestExecutor(
        BASE_URL,
        credentials=credentials,
        transport=scripted_transport(statuses, calls),
        sleep=sleeper,
        base_delay=1.0,
        **kwargs,
    )


def fake_credentials():
    credentials = MagicMock()
    first = AccessToken(value="old", expires_at=10**12)
    fresh = AccessToken(value="new", expires_at=10**12)
    credentials.ensure_token = AsyncMock(return_value=first)
    credentials.on_auth_failure = AsyncMock(return_value=fresh)
    return credentials


class TestClassification:
    """Which statuses are retried."""

    def test_retryable_statuses(self):
        """5xx and 429 are retryable; other 4xx are not."""
        assert is_retryable_status(500)
        assert is_retryable_status(503)
        assert is_retryable_status(429)
        assert not is_retryable_status(400)
        assert not is_retryable_status(404)
        assert not is_retryable_status(409)


class TestRetrySchedule:
    """Attempts and exponential backoff."""

    @pytest.mark.asyncio
    async def test_two_503_then_success(self, sleeper):
        """503, 503, 200 takes three attempts with delays base, 2*base."""
        calls = []
        executor = make_executor([503, 503, 200], calls, sleeper)

        response = await executor.execute(ApiRequest("GET", "/orders"))

        assert response.status_code == 200
        assert len(calls) == 3
        assert sleeper.delays == [1.0, 2.0]
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_404_is_not_retried(self, sleeper):
        """A single 404 surfaces immediately after one attempt."""
        calls = []
        executor = make_executor([404], calls, sleeper)

        with pytest.raises(RequestError) as exc_info:
            await executor.execute(ApiRequest("GET", "/orders"))

        assert exc_info.value.status_code == 404
        assert len(calls) == 1
        assert sleeper.delays == []
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_429_is_retried(self, sleeper):
        """Rate limiting is treated as transient."""
        calls = []
        executor = make_executor([429, 200], calls, sleeper)

        response = await executor.execute(ApiRequest("GET", "/orders"))

        assert response.status_code == 200
        assert len(calls) == 2
        assert sleeper.delays == [1.0]
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self, sleeper):
        """After max_attempts the last transient error is raised."""
        calls = []
        executor = make_executor([500, 502, 503], calls, sleeper)

        with pytest.raises(TransientNetworkError) as exc_info:
            await executor.execute(ApiRequest("GET", "/orders"))

        assert exc_info.value.status_code == 503
        assert len(calls) == 3
        assert sleeper.delays == [1.0, 2.0]
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self, sleeper):
        """Timeouts become TransientNetworkError and are retried."""
        calls = []
        executor = make_executor(["timeout", 200], calls, sleeper)

        response = await executor.execute(ApiRequest("GET", "/orders"))

        assert response.status_code == 200
        assert len(calls) == 2
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_custom_max_attempts(self, sleeper):
        """max_attempts bounds the number of calls."""
        calls = []
        executor = make_executor([503], calls, sleeper, max_attempts=5)

        with pytest.raises(TransientNetworkError):
            await executor.execute(ApiRequest("GET", "/orders"))

        assert len(calls) == 5
        assert sleeper.delays == [1.0, 2.0, 4.0, 8.0]
        await executor.aclose()


class TestAuthReplay:
    """401 handling through the credential manager."""

    @pytest.mark.asyncio
    async def test_401_refreshes_and_replays_once(self, sleeper):
        """One 401 triggers on_auth_failure and a replay with the fresh token."""
        calls = []
        credentials = fake_credentials()
        executor = make_executor([401, 200], calls, sleeper, credentials=credentials)

        response = await executor.execute(ApiRequest("GET", "/orders"))

        assert response.status_code == 200
        credentials.on_auth_failure.assert_awaited_once()
        assert calls[0].headers["Authorization"] == "Bearer old"
        assert calls[1].headers["Authorization"] == "Bearer new"
        assert sleeper.delays == []
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_persistent_401_raises_auth_error(self, sleeper):
        """Still unauthorized after the replay is an AuthError, not a retry loop."""
        calls = []
        credentials = fake_credentials()
        executor = make_executor([401], calls, sleeper, credentials=credentials)

        with pytest.raises(AuthError):
            await executor.execute(ApiRequest("GET", "/orders"))

        assert len(calls) == 2
        credentials.on_auth_failure.assert_awaited_once()
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_rejected_token_exchange_propagates(self, sleeper):
        """AuthError from the token exchange ends the call without retries."""
        calls = []
        credentials = MagicMock()
        credentials.ensure_token = AsyncMock(side_effect=AuthError("rejected"))
        executor = make_executor([200], calls, sleeper, credentials=credentials)

        with pytest.raises(AuthError):
            await executor.execute(ApiRequest("GET", "/orders"))

        assert calls == []
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_refreshes_at_most_once_per_execute(self, sleeper):
        """A 401 on a later attempt fails with AuthError instead of refreshing again."""
        calls = []
        credentials = fake_credentials()
        executor = make_executor([401, 503, 401], calls, sleeper, credentials=credentials)

        with pytest.raises(AuthError):
            await executor.execute(ApiRequest("GET", "/orders"))

        assert len(calls) == 3
        assert credentials.on_auth_failure.await_count == 1
        assert sleeper.delays == [1.0]
        await executor.aclose()


class TestRequest:
    """JSON decoding helper."""

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self, sleeper):
        """204 responses decode to None."""
        transport = httpx.MockTransport(lambda request: httpx.Response(204))
        executor = RequestExecutor(BASE_URL, transport=transport, sleep=sleeper)

        assert await executor.request("DELETE", "/v2/environment/webhooks/1") is None
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_sends_params_and_json(self, sleeper):
        """Query params and JSON body reach the transport."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "s1"})

        executor = RequestExecutor(BASE_URL, transport=httpx.MockTransport(handler), sleep=sleeper)

        result = await executor.request("POST", "/stream", params={"a": "1"}, json={"b": 2})

        assert result == {"id": "s1"}
        assert seen[0].url.params["a"] == "1"
        assert json.loads(seen[0].content) == {"b": 2}
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_non_json_success_body_raises_transient_error(self, sleeper):
        """A 2xx HTML maintenance page surfaces as a TransientNetworkError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        executor = RequestExecutor(BASE_URL, transport=transport, sleep=sleeper)

        with pytest.raises(TransientNetworkError) as exc_info:
            await executor.request("GET", "/v2/shipments/se-1")

        assert exc_info.value.status_code == 200
        assert "maintenance" in exc_info.value.details
        await executor.aclose()

"""
backend/tests/test_http_client.py

Purpose:
    Retry, Retry-After and circuit breaker behavior of the feed HTTP client,
    driven through an httpx mock transport.
"""

from __future__ import annotations

import httpx
import pytest

from app.providers.base import ProviderError
from app.providers.http_client import CircuitBreaker, ResilientClient


def _client(handler, **kwargs) -> ResilientClient:
    client = ResilientClient("test_feed", "https://feed.example", headers={"X-Auth-Token": "secret"}, base_delay=0, **kwargs)
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


@pytest.mark.asyncio
async def test_retries_transient_status_then_succeeds():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, headers={"Retry-After": "0"})
        return httpx.Response(200, json={"matches": []})

    client = _client(handler, max_retries=2)
    data = await client.get_json("/matches", params={"status": "LIVE"})

    assert data == {"matches": []}
    assert len(calls) == 2
    assert calls[0].headers["X-Auth-Token"] == "secret"
    assert calls[0].headers["Cache-Control"].startswith("no-cache")
    assert calls[0].url.params["status"] == "LIVE"
    assert client.circuit.failure_count == 0
    await client.aclose()


@pytest.mark.asyncio
async def test_exhausted_retries_raise_with_status_code():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="oops")

    client = _client(handler, max_retries=1)
    with pytest.raises(ProviderError) as exc_info:
        await client.get_json("/matches")

    assert exc_info.value.status_code == 500
    assert client.circuit.failure_count == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404, json={"message": "not found"})

    client = _client(handler, max_retries=3)
    with pytest.raises(ProviderError) as exc_info:
        await client.get_json("/matches/1")

    assert exc_info.value.status_code == 404
    assert len(calls) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_network_errors_open_the_circuit():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler, max_retries=0)
    client.circuit = CircuitBreaker(failure_threshold=1, recovery_timeout=600)

    with pytest.raises(ProviderError):
        await client.get_json("/matches")
    assert client.circuit.is_open

    with pytest.raises(ProviderError, match="circuit open"):
        await client.get_json("/matches")
    assert len(calls) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_non_object_body_is_rejected():
    client = _client(lambda request: httpx.Response(200, json=[1, 2, 3]))
    with pytest.raises(ProviderError, match="invalid response format"):
        await client.get_json("/matches")
    await client.aclose()


def test_circuit_breaker_half_opens_after_timeout():
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0)
    breaker.record_failure()
    assert breaker.can_attempt()
    breaker.record_failure()
    assert breaker.is_open
    breaker.last_failure_time -= 1
    assert breaker.can_attempt()
    breaker.record_success()
    assert not breaker.is_open


@pytest.mark.asyncio
async def test_html_body_is_a_provider_error():
    client = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    with pytest.raises(ProviderError, match="non-JSON body"):
        await client.get_json("/matches")
    await client.aclose()

"""Tests for the call executor against a mocked HTTP transport."""

import asyncio
import json

import httpx
import pytest

from skillheal.routing.executor import CallExecutor, CallOptions, FailureReason

MESSAGES = [{"role": "user", "content": "hello"}]


def _completion(content="hi there", prompt_tokens=1_000_000, completion_tokens=1_000_000):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def _executor(catalog, handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CallExecutor(catalog, api_key="test-key", base_url="https://llm.test/api/v1", client=client, **kwargs)


@pytest.mark.asyncio
async def test_success_reports_tokens_and_cost(catalog):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion())

    executor = _executor(catalog, handler)
    attempt = await executor.execute("cognitivecomputations/dolphin-3.0", MESSAGES)

    assert attempt.succeeded
    assert attempt.outcome == "success"
    assert attempt.content == "hi there"
    assert attempt.input_tokens == 1_000_000
    assert attempt.output_tokens == 1_000_000
    assert attempt.cost == pytest.approx(0.002)
    assert attempt.latency_ms >= 0

    assert seen["url"] == "https://llm.test/api/v1/chat/completions"
    assert seen["headers"]["authorization"] == "Bearer test-key"
    assert "x-title" in seen["headers"]
    assert "http-referer" in seen["headers"]
    assert seen["body"]["model"] == "cognitivecomputations/dolphin-3.0"
    assert seen["body"]["messages"] == MESSAGES
    assert seen["body"]["temperature"] == 0.7
    assert seen["body"]["max_tokens"] == 2048
    assert seen["body"]["top_p"] == 1.0


@pytest.mark.asyncio
async def test_options_forwarded(catalog):
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion())

    executor = _executor(catalog, handler)
    await executor.execute("nous-hermes-3", MESSAGES, CallOptions(temperature=0.1, max_tokens=64, top_p=0.5))
    assert seen["body"]["temperature"] == 0.1
    assert seen["body"]["max_tokens"] == 64
    assert seen["body"]["top_p"] == 0.5


@pytest.mark.asyncio
async def test_missing_usage_counts_zero(catalog):
    executor = _executor(catalog, lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}))
    attempt = await executor.execute("nous-hermes-3", MESSAGES)
    assert attempt.succeeded
    assert attempt.input_tokens == 0
    assert attempt.output_tokens == 0
    assert attempt.cost == 0


@pytest.mark.asyncio
async def test_provider_error_carries_status(catalog):
    executor = _executor(catalog, lambda r: httpx.Response(429, text="rate limited"))
    attempt = await executor.execute("nous-hermes-3", MESSAGES)
    assert not attempt.succeeded
    assert attempt.reason == FailureReason.PROVIDER_ERROR
    assert attempt.status_code == 429
    assert attempt.outcome == "provider_error(429)"
    assert "rate limited" in attempt.error


@pytest.mark.asyncio
async def test_malformed_body_is_transport_error(catalog):
    executor = _executor(catalog, lambda r: httpx.Response(200, text="<html>oops</html>"))
    attempt = await executor.execute("nous-hermes-3", MESSAGES)
    assert attempt.reason == FailureReason.TRANSPORT_ERROR
    assert "Malformed" in attempt.error


@pytest.mark.asyncio
async def test_missing_choices_is_transport_error(catalog):
    executor = _executor(catalog, lambda r: httpx.Response(200, json={"choices": []}))
    attempt = await executor.execute("nous-hermes-3", MESSAGES)
    assert attempt.reason == FailureReason.TRANSPORT_ERROR


@pytest.mark.asyncio
async def test_connect_error_is_transport_error(catalog):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    executor = _executor(catalog, handler)
    attempt = await executor.execute("nous-hermes-3", MESSAGES)
    assert attempt.reason == FailureReason.TRANSPORT_ERROR
    assert "ConnectError" in attempt.error


@pytest.mark.asyncio
async def test_httpx_timeout_is_timeout(catalog):
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    executor = _executor(catalog, handler)
    attempt = await executor.execute("nous-hermes-3", MESSAGES)
    assert attempt.reason == FailureReason.TIMEOUT
    assert attempt.outcome == "timeout"


@pytest.mark.asyncio
async def test_hard_timeout(catalog):
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json=_completion())

    executor = _executor(catalog, handler)
    attempt = await executor.execute("nous-hermes-3", MESSAGES, CallOptions(timeout=0.05))
    assert attempt.reason == FailureReason.TIMEOUT
    assert attempt.latency_ms < 5000


@pytest.mark.asyncio
async def test_missing_api_key_makes_no_request(catalog):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=_completion())

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    executor = CallExecutor(catalog, api_key="", client=client)
    attempt = await executor.execute("nous-hermes-3", MESSAGES)
    assert attempt.reason == FailureReason.TRANSPORT_ERROR
    assert calls == []


@pytest.mark.asyncio
async def test_cancellation_propagates(catalog):
    started = asyncio.Event()

    async def handler(request):
        started.set()
        await asyncio.sleep(10)
        return httpx.Response(200, json=_completion())

    executor = _executor(catalog, handler)
    task = asyncio.create_task(executor.execute("nous-hermes-3", MESSAGES))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

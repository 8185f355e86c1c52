import asyncio

import httpx
import pytest

from chat_core.domain.exceptions import LlmError, LlmErrorKind
from chat_core.infrastructure.network.sse_client import SseClient, SseRequest, parse_sse_data


def test_parse_sse_data():
    assert parse_sse_data("") is None
    assert parse_sse_data("   ") is None
    assert parse_sse_data(": keep-alive") is None
    assert parse_sse_data("event: message") is None
    assert parse_sse_data("data: {\"a\": 1}") == "{\"a\": 1}"
    assert parse_sse_data("data:[DONE]") == "[DONE]"
    assert parse_sse_data("{\"raw\": true}") == "{\"raw\": true}"


async def test_stream_yields_data_payloads():
    body = "data: one\n\n: ping\n\ndata: two\n\n"

    def handler(request):
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    sse = SseClient(transport=httpx.MockTransport(handler))
    payloads = [p async for p in sse.stream(SseRequest(url="https://x.test/s", json_body={}), "t1")]
    assert payloads == ["one", "two"]
    assert not sse.is_active("t1")


async def test_stream_maps_status_errors():
    def handler(request):
        return httpx.Response(429, text="slow down")

    sse = SseClient(transport=httpx.MockTransport(handler))
    with pytest.raises(LlmError) as ei:
        async for _ in sse.stream(SseRequest(url="https://x.test/s"), "t1"):
            pass
    assert ei.value.kind == LlmErrorKind.RATE_LIMIT
    assert ei.value.status_code == 429
    assert ei.value.body == "slow down"


async def test_stream_maps_transport_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    sse = SseClient(transport=httpx.MockTransport(handler))
    with pytest.raises(LlmError) as ei:
        async for _ in sse.stream(SseRequest(url="https://x.test/s"), "t1"):
            pass
    assert ei.value.kind == LlmErrorKind.NETWORK_CONNECTION
    assert isinstance(ei.value.__cause__, httpx.ConnectError)


async def test_cancel_by_task_id():
    gate = asyncio.Event()
    first_seen = asyncio.Event()

    async def body():
        yield b"data: first\n\n"
        await gate.wait()
        yield b"data: never\n\n"

    def handler(request):
        return httpx.Response(200, content=body())

    sse = SseClient(transport=httpx.MockTransport(handler))
    received = []

    async def consume():
        async for payload in sse.stream(SseRequest(url="https://x.test/s"), "t1"):
            received.append(payload)
            first_seen.set()

    task = asyncio.create_task(consume())
    await asyncio.wait_for(first_seen.wait(), timeout=5)
    assert sse.is_active("t1")
    assert sse.cancel("t1") is True
    with pytest.raises(asyncio.CancelledError):
        await task
    assert received == ["first"]
    assert sse.cancel("t1") is False

"""Integration tests for ARCClient.

Exercises the client against a real engine, in process and over HTTP
(httpx ASGI and mock transports), verifying correlation, error surfacing,
streaming and cancellation end to end.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from conftest import AGENT_ID

from arc_runtime.app import create_app
from arc_runtime.config import ClientConfig
from arc_runtime.protocol.errors import ErrorCode, ProtocolError, TransportError
from arc_runtime.sdk import ARCClient, HTTPClientTransport, LocalClientTransport
from arc_runtime.sdk.correlation import (
    ARCResponseError,
    CallCanceledError,
    CallState,
    CallTimeoutError,
    UndeliverableError,
)


@pytest.fixture
def transport(engine) -> LocalClientTransport:
    return LocalClientTransport(engine)


@pytest.fixture
def client(transport) -> ARCClient:
    return ARCClient(transport, sender="client-app-01", default_target=AGENT_ID)


def mock_http_client(handler) -> ARCClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    config = ClientConfig(endpoint="http://agent.test/arc", token="secret")
    return ARCClient(HTTPClientTransport(config, client=http), sender="client-app-01", default_target=AGENT_ID)


def envelope_for(request: httpx.Request, **fields) -> dict:
    sent = json.loads(request.content)
    reply = {
        "version": "1.0",
        "id": sent["id"],
        "responder": AGENT_ID,
        "target": sent["sender"],
        "result": None,
        "error": None,
    }
    reply.update(fields)
    return reply


# =============================================================================
# In-process
# =============================================================================


class TestLocalCalls:
    """Test unary calls through the in-process transport."""

    @pytest.mark.asyncio
    async def test_task_create(self, client, transport):
        result = await client.task.create("Analyze the quarterly report", priority="HIGH")

        assert result == {"type": "task", "task": {"taskId": "t1", "status": "SUBMITTED"}}
        sent = transport.sent_requests[0]
        assert sent.method == "task.create"
        assert sent.target == AGENT_ID
        assert sent.params["initialMessage"]["parts"][0]["content"] == "Analyze the quarterly report"
        assert sent.params["priority"] == "HIGH"

    @pytest.mark.asyncio
    async def test_agent_error_is_raised(self, client):
        with pytest.raises(ARCResponseError) as exc_info:
            await client.task.info("missing")

        assert exc_info.value.code == ErrorCode.TASK_NOT_FOUND
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_trace_id_propagates(self, client):
        result = await client.call("debug.context", trace_id="wf-42")

        assert result["traceId"] == "wf-42"

    @pytest.mark.asyncio
    async def test_chat_end_success(self, client):
        assert await client.chat.end("c1") == {"success": True}

    @pytest.mark.asyncio
    async def test_wrong_target(self, client):
        with pytest.raises(ARCResponseError) as exc_info:
            await client.task.create("hi", target="agent-2")

        assert exc_info.value.code == ErrorCode.AGENT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_no_target(self, transport):
        client = ARCClient(transport, sender="client-app-01")

        with pytest.raises(ValueError):
            await client.task.create("hi")

    @pytest.mark.asyncio
    async def test_unary_call_on_streaming_method(self, client):
        """A streamed reply to a unary call is a protocol error."""
        with pytest.raises(ProtocolError) as exc_info:
            await client.call("chat.start", {"initialMessage": {"role": "user", "parts": []}})

        assert exc_info.value.code == ErrorCode.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_timeout(self, engine, client):
        async def slow(params, context):
            await asyncio.sleep(10)

        engine.register("task.send", slow)

        with pytest.raises(CallTimeoutError):
            await client.call("task.send", timeout=0.01)
        assert len(client.tracker) == 0

    @pytest.mark.asyncio
    async def test_cancel_unary(self, engine, client):
        started = asyncio.Event()

        async def slow(params, context):
            started.set()
            await asyncio.sleep(10)

        engine.register("task.send", slow)
        pending = client.send(client.build_request("task.send"))
        await started.wait()

        assert client.cancel(pending.id)
        with pytest.raises(CallCanceledError):
            await pending.wait()
        assert pending.state == CallState.CANCELED

    @pytest.mark.asyncio
    async def test_concurrent_calls(self, client):
        results = await asyncio.gather(
            client.task.info("t1"),
            client.chat.end("c1"),
            client.task.create("hi"),
        )

        assert results[1] == {"success": True}
        assert results[0]["task"]["status"] == "WORKING"

    @pytest.mark.asyncio
    async def test_close_cancels_outstanding(self, engine, transport):
        async def slow(params, context):
            await asyncio.sleep(10)

        engine.register("task.send", slow)
        async with ARCClient(transport, sender="s", default_target=AGENT_ID) as client:
            pending = client.send(client.build_request("task.send"))

        with pytest.raises(CallCanceledError):
            await pending.wait()


class TestLocalStreaming:
    """Test streamed calls through the in-process transport."""

    @pytest.mark.asyncio
    async def test_chat_stream(self, client):
        reader = await client.chat.start("Hello", stream=True)

        assert [text async for text in reader.results()] == ["Hel", "lo"]
        assert reader.terminal.status == "ACTIVE"
        assert len(client.tracker) == 0

    @pytest.mark.asyncio
    async def test_stream_error_before_streaming(self, client):
        """A refused stream request ends with a single error frame."""
        reader = await client.chat.start("Hello", stream=True, target="agent-2")

        frames = [frame async for frame in reader]

        assert len(frames) == 1
        assert frames[0].error.code == ErrorCode.AGENT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unary_reply_as_stream(self, client):
        """Non-streaming handlers still work through stream()."""
        reader = await client.stream("task.info", {"taskId": "t1"})

        frames = [frame async for frame in reader]

        assert frames[0].partial_result["task"]["taskId"] == "t1"
        assert frames[1].status == "WORKING"

    @pytest.mark.asyncio
    async def test_cancel_stream(self, engine, client):
        """Canceling ends the stream with CANCELED and stops the producer."""
        stopped = asyncio.Event()

        async def endless(params, context):
            try:
                while True:
                    yield "tick"
                    await asyncio.sleep(0)
            finally:
                stopped.set()

        engine.register("chat.message", endless)
        reader = await client.chat.message("c1", "go", stream=True)

        first = await reader.__anext__()
        assert client.cancel(reader.request_id)
        rest = [frame async for frame in reader]

        assert first.partial_result == "tick"
        assert rest[-1].status == "CANCELED"
        await asyncio.wait_for(stopped.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_stream_timeout_stops_producer(self, engine, client):
        """A stream past its deadline raises CallTimeoutError and stops the handler."""
        stopped = asyncio.Event()

        async def slow(params, context):
            try:
                for i in range(5):
                    await asyncio.sleep(0.05)
                    yield f"part-{i}"
            finally:
                stopped.set()

        engine.register("chat.message", slow)
        reader = await client.stream("chat.message", {"chatId": "c1"}, timeout=0.06)

        frames = []
        with pytest.raises(CallTimeoutError):
            async for frame in reader:
                frames.append(frame)

        assert len(frames) < 6
        assert all(not frame.done for frame in frames)
        assert reader.done
        assert client.cancel(reader.request_id) is False
        await asyncio.wait_for(stopped.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_stream_uses_client_timeout_by_default(self, engine, transport):
        client = ARCClient(transport, sender="client-app-01", default_target=AGENT_ID, timeout=0.06)

        async def slow(params, context):
            for i in range(5):
                await asyncio.sleep(0.05)
                yield i

        engine.register("chat.message", slow)
        reader = await client.stream("chat.message", {"chatId": "c1"})

        with pytest.raises(CallTimeoutError):
            async for _ in reader:
                pass


# =============================================================================
# HTTP
# =============================================================================


class TestHTTPTransport:
    """Test the httpx transport."""

    @pytest.mark.asyncio
    async def test_unary_over_asgi(self, engine):
        app = create_app(engine)
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        config = ClientConfig(endpoint="http://testserver/arc")

        async with ARCClient(HTTPClientTransport(config, client=http), sender="s", default_target=AGENT_ID) as client:
            result = await client.task.create("hi")

        assert result["task"]["taskId"] == "t1"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_stream_over_asgi(self, engine):
        app = create_app(engine)
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        config = ClientConfig(endpoint="http://testserver/arc")
        client = ARCClient(HTTPClientTransport(config, client=http), sender="s", default_target=AGENT_ID)

        reader = await client.chat.start("Hello", stream=True)
        frames = [frame async for frame in reader]

        assert [f.partial_result for f in frames[:-1]] == ["Hel", "lo"]
        assert frames[-1].status == "ACTIVE"
        await client.close()
        await http.aclose()

    @pytest.mark.asyncio
    async def test_connection_refused_is_undeliverable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = mock_http_client(refuse)

        with pytest.raises(UndeliverableError):
            await client.task.create("hi")

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self):
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("authorization")
            return httpx.Response(200, json=envelope_for(request, result={"success": True}))

        client = mock_http_client(handler)

        assert await client.chat.end("c1") == {"success": True}
        assert seen["authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_http_error_without_envelope(self):
        client = mock_http_client(lambda request: httpx.Response(502, text="Bad gateway"))

        with pytest.raises(TransportError) as exc_info:
            await client.task.create("hi")

        assert exc_info.value.details == {"status": 502}
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_mismatched_reply_id(self):
        def handler(request):
            return httpx.Response(200, json=envelope_for(request, id="someone-else", result={}))

        client = mock_http_client(handler)

        with pytest.raises(ProtocolError) as exc_info:
            await client.task.create("hi")

        assert exc_info.value.code == ErrorCode.RESPONSE_ID_MISMATCH

"""Client-side transports for ARCClient.

A transport delivers one request envelope and hands back either the raw
reply (send) or a source of raw frames (open_stream). Correlation, timeouts
and validation stay in the client and tracker; transports only move bytes.

- HTTPClientTransport: POST to a remote agent's /arc endpoint (httpx)
- LocalClientTransport: call an in-process ARCEngine (tests, embedding)

Failure reporting:
- UndeliverableError: the request never reached the agent
- TransportError: the request was delivered but the reply is unusable
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any, Protocol, runtime_checkable

import httpx

from ..config import ClientConfig
from ..protocol.dispatcher import ARCEngine
from ..protocol.envelope import RequestEnvelope, ResponseEnvelope, validate_response
from ..protocol.errors import ProtocolError, TransportError
from ..protocol.streaming import (
    CANCELED_STATUS,
    NDJSON_MEDIA_TYPE,
    SSE_MEDIA_TYPE,
    FrameStream,
    StreamFrame,
    frames_from_response,
    parse_ndjson_lines,
    parse_sse_lines,
)
from .correlation import UndeliverableError

logger = logging.getLogger(__name__)


@runtime_checkable
class FrameSource(Protocol):
    """Raw frames of one streamed reply, in arrival order."""

    def __aiter__(self) -> AsyncIterator[Any]: ...

    def cancel(self) -> None:
        """Ask the producer to stop; the source then ends with a CANCELED frame."""
        ...

    async def aclose(self) -> None: ...


@runtime_checkable
class ClientTransport(Protocol):
    """Protocol for client transports."""

    async def send(self, request: RequestEnvelope) -> Any:
        """Deliver a request and return the raw (unvalidated) reply.

        Raises:
            UndeliverableError: If the request could not be delivered
            TransportError: If no usable reply came back
        """
        ...

    async def open_stream(self, request: RequestEnvelope) -> FrameSource:
        """Deliver a request whose reply is expected to be streamed.

        A unary reply is returned as the equivalent frame sequence.
        """
        ...

    async def close(self) -> None: ...


class ReplayFrameSource:
    """A FrameSource over frames that are already known."""

    def __init__(self, frames: Iterable[StreamFrame]) -> None:
        self._frames = list(frames)
        self._canceled = False
        self._closed = False

    def cancel(self) -> None:
        self._canceled = True

    async def aclose(self) -> None:
        self._closed = True

    async def __aiter__(self) -> AsyncIterator[Any]:
        for frame in self._frames:
            if self._closed:
                return
            if self._canceled and not frame.done:
                yield StreamFrame.terminal(frame.correlation_key, CANCELED_STATUS).to_wire()
                return
            yield frame.to_wire()
            if frame.done:
                return


def _stream_reply_error(request: RequestEnvelope) -> ProtocolError:
    return ProtocolError(
        "Agent replied with a stream; use stream() for this method",
        {"method": request.method},
    )


# =============================================================================
# HTTP
# =============================================================================


class HTTPFrameSource:
    """Frames read from a streamed HTTP reply (SSE or NDJSON)."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        request: RequestEnvelope,
        url: str,
        headers: dict[str, str],
    ) -> None:
        self._client = client
        self._request = request
        self._url = url
        self._headers = headers
        self._response: httpx.Response | None = None
        self._key: str | int = request.id
        self._canceled = False
        self._closed = False
        self._close_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Send the request and wait for the response headers."""
        http_request = self._client.build_request(
            "POST", self._url, json=self._request.to_wire(), headers=self._headers
        )
        try:
            self._response = await self._client.send(http_request, stream=True)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise UndeliverableError(f"Cannot reach {self._url}: {e}", self._request.id) from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP request failed: {e}") from e

    def cancel(self) -> None:
        if self._canceled or self._closed:
            return
        self._canceled = True
        logger.debug(f"Canceling stream for request {self._request.id}")
        # Closing the connection is how the agent learns the caller went away
        if self._response is not None:
            self._close_task = asyncio.ensure_future(self._response.aclose())

    async def aclose(self) -> None:
        self._closed = True
        if self._response is not None:
            await self._response.aclose()

    async def __aiter__(self) -> AsyncIterator[Any]:
        response = self._response
        if response is None:
            raise TransportError("Stream not started")

        content_type = response.headers.get("content-type", "")
        try:
            if SSE_MEDIA_TYPE in content_type or NDJSON_MEDIA_TYPE in content_type:
                parse = parse_sse_lines if SSE_MEDIA_TYPE in content_type else parse_ndjson_lines
                async for data in parse(response.aiter_lines()):
                    if self._canceled:
                        break
                    if isinstance(data, dict) and "correlationKey" in data:
                        self._key = data["correlationKey"]
                    yield data
            else:
                await response.aread()
                envelope = _unary_envelope(response, self._request.id)
                for frame in frames_from_response(envelope):
                    yield frame.to_wire()
        except (httpx.HTTPError, httpx.StreamError) as e:
            if not self._canceled:
                raise TransportError(f"Stream interrupted: {e}") from e
        finally:
            await response.aclose()

        if self._canceled:
            yield StreamFrame.terminal(self._key, CANCELED_STATUS).to_wire()


def _unary_envelope(response: httpx.Response, request_id: str | int) -> ResponseEnvelope:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise TransportError(
            f"Unreadable reply (HTTP {response.status_code})",
            {"status": response.status_code},
        ) from e
    return validate_response(data, request_id)


class HTTPClientTransport:
    """Transport over HTTP POST to an agent's ARC endpoint.

    Unary replies are JSON; streamed replies are SSE (or NDJSON). Agents
    answer with status 200 for every envelope, but an envelope carried by
    any other status is still returned so the caller sees the agent's error.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout, read=None),
                verify=self.config.verify_ssl,
            )
        return self._client

    def _headers(self, accept: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": accept}
        headers.update(self.config.headers)
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def send(self, request: RequestEnvelope) -> Any:
        try:
            response = await self.client.post(
                self.config.endpoint,
                json=request.to_wire(),
                headers=self._headers("application/json"),
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise UndeliverableError(
                f"Cannot reach {self.config.endpoint}: {e}", request.id
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP request failed: {e}") from e

        content_type = response.headers.get("content-type", "")
        if SSE_MEDIA_TYPE in content_type or NDJSON_MEDIA_TYPE in content_type:
            raise _stream_reply_error(request)

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            if response.status_code >= 400:
                raise TransportError(
                    f"HTTP {response.status_code} from agent",
                    {"status": response.status_code},
                ) from e
            raise ProtocolError("Reply is not valid JSON") from e

        if response.status_code >= 400 and not (isinstance(data, dict) and "version" in data):
            raise TransportError(
                f"HTTP {response.status_code} from agent",
                {"status": response.status_code},
            )
        return data

    async def open_stream(self, request: RequestEnvelope) -> HTTPFrameSource:
        source = HTTPFrameSource(
            self.client,
            request,
            self.config.endpoint,
            self._headers(f"{SSE_MEDIA_TYPE}, application/json"),
        )
        await source.start()
        return source

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> HTTPClientTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


# =============================================================================
# In-process
# =============================================================================


class LocalClientTransport:
    """Transport that calls an ARCEngine in the same process.

    Requests still go through their wire form so the engine sees exactly
    what a remote agent would receive.

    Usage:
        engine = ARCEngine(EngineConfig(agent_id="agent-1"))
        client = ARCClient(LocalClientTransport(engine), sender="tester")
    """

    def __init__(self, engine: ARCEngine, credential: str | None = None) -> None:
        self.engine = engine
        self.credential = credential
        self._sent: list[RequestEnvelope] = []

    @property
    def sent_requests(self) -> list[RequestEnvelope]:
        """Requests delivered so far (for tests)."""
        return list(self._sent)

    async def send(self, request: RequestEnvelope) -> Any:
        self._sent.append(request)
        reply = await self.engine.handle(request.to_wire(), self.credential)
        if isinstance(reply, FrameStream):
            await reply.aclose()
            raise _stream_reply_error(request)
        return reply.to_wire()

    async def open_stream(self, request: RequestEnvelope) -> FrameSource:
        self._sent.append(request)
        reply = await self.engine.handle(request.to_wire(), self.credential)
        if isinstance(reply, FrameStream):
            return reply
        return ReplayFrameSource(frames_from_response(reply))

    async def close(self) -> None:
        return None

"""Stream codec for incremental responses.

A streaming handler produces partial result fragments. Each fragment
becomes one frame; the stream ends with exactly one terminal frame:

    {"correlationKey": "chat-1", "partialResult": "Hel"}
    {"correlationKey": "chat-1", "partialResult": "lo"}
    {"correlationKey": "chat-1", "done": true, "status": "ACTIVE"}

If the producer fails, the terminal frame carries the error instead:

    {"correlationKey": "chat-1", "done": true, "error": {"code": -32603, ...}}

Encoding side (FrameStream): the producer runs as its own task and hands
frames to the consumer through a single-slot queue. After each partial
frame the producer waits for the consumer to take it before it asks the
handler for the next fragment.

Decoding side (FrameReader): forward-only view over received frames that
stops at the terminal frame even if the transport keeps going.

Wire encodings for HTTP transports live here too (SSE and NDJSON).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .envelope import ResponseEnvelope
from .errors import ARCError, ErrorObject, InternalError, ProtocolError, TransportError
from .methods import method_domain
from .types import ChatStatus, TaskStatus

logger = logging.getLogger(__name__)

CANCELED_STATUS = TaskStatus.CANCELED.value

SSE_MEDIA_TYPE = "text/event-stream"
NDJSON_MEDIA_TYPE = "application/x-ndjson"


def default_terminal_status(method: str) -> str:
    """Status reported when a producer finishes normally."""
    if method_domain(method) == "chat":
        return ChatStatus.ACTIVE.value
    return TaskStatus.COMPLETED.value


class StreamFrame(BaseModel):
    """One frame of a stream: a partial result or the terminal marker."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    correlation_key: str | int = Field(alias="correlationKey")
    partial_result: Any = Field(default=None, alias="partialResult")
    done: bool = False
    status: str | None = None
    error: ErrorObject | None = None

    @classmethod
    def partial(cls, key: str | int, fragment: Any) -> StreamFrame:
        return cls(correlation_key=key, partial_result=fragment)

    @classmethod
    def terminal(cls, key: str | int, status: str) -> StreamFrame:
        return cls(correlation_key=key, done=True, status=status)

    @classmethod
    def failed(cls, key: str | int, error: ErrorObject) -> StreamFrame:
        return cls(correlation_key=key, done=True, error=error)

    def is_terminal(self) -> bool:
        return self.done

    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        if not self.done:
            return {"correlationKey": self.correlation_key, "partialResult": self.partial_result}
        data: dict[str, Any] = {"correlationKey": self.correlation_key, "done": True}
        if self.error is not None:
            data["error"] = self.error.to_wire()
        else:
            data["status"] = self.status
        return data

    @classmethod
    def from_wire(cls, data: Any) -> StreamFrame:
        """Parse a received frame.

        Raises:
            ProtocolError: If the frame is malformed
        """
        if isinstance(data, StreamFrame):
            return data
        if not isinstance(data, dict) or "correlationKey" not in data:
            raise ProtocolError("Invalid stream frame: missing correlationKey")
        try:
            frame = cls.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(
                "Invalid stream frame",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        if frame.done and (frame.status is None) == (frame.error is None):
            raise ProtocolError("Terminal frame must carry exactly one of status or error")
        return frame


@dataclass
class StreamResult:
    """Returned by a handler to stream its reply.

    A handler may also return a bare async generator; StreamResult is only
    needed to choose the terminal status or the correlation key (e.g. a
    chat id instead of the request id).
    """

    fragments: AsyncIterable[Any] | Iterable[Any]
    status: str | None = None
    correlation_key: str | int | None = None


ErrorMapper = Callable[[BaseException], ErrorObject]


def _default_error_mapper(exc: BaseException) -> ErrorObject:
    if isinstance(exc, ARCError):
        return exc.to_error_object()
    return InternalError().to_error_object()


async def _iterate(source: AsyncIterable[Any] | Iterable[Any]) -> AsyncIterator[Any]:
    """Iterate either kind of producer, closing it when iteration stops early."""
    if isinstance(source, AsyncIterable):
        aiterator = source.__aiter__()
        try:
            async for item in aiterator:
                yield item
        finally:
            aclose = getattr(aiterator, "aclose", None)
            if aclose is not None:
                await aclose()
    else:
        iterator = iter(source)
        try:
            for item in iterator:
                yield item
                # Let the consumer run between synchronous fragments
                await asyncio.sleep(0)
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()


def is_stream(value: Any) -> bool:
    """Whether a handler return value should be streamed."""
    if isinstance(value, StreamResult):
        return True
    if isinstance(value, (str, bytes, dict, list, tuple, BaseModel)):
        return False
    return isinstance(value, AsyncIterable) or hasattr(value, "__next__")


class FrameStream:
    """Encodes a producer of fragments as an ordered sequence of frames.

    Usage:
        stream = FrameStream(fragments(), correlation_key="chat-1", status="ACTIVE")
        async for frame in stream:
            transport.send(frame.to_wire())

    Guarantees:
        - frames arrive in production order, one per fragment
        - exactly one terminal frame, after which iteration stops
        - the producer never runs more than one frame ahead of the consumer
        - cancel() stops the producer and ends the stream with CANCELED
    """

    def __init__(
        self,
        fragments: AsyncIterable[Any] | Iterable[Any],
        correlation_key: str | int,
        status: str = TaskStatus.COMPLETED.value,
        error_mapper: ErrorMapper | None = None,
    ) -> None:
        self.correlation_key = correlation_key
        self._fragments = fragments
        self._status = status
        self._map_error = error_mapper or _default_error_mapper
        self._queue: asyncio.Queue[StreamFrame] = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task[None] | None = None
        self._finished = False
        self._canceled = False

    @property
    def finished(self) -> bool:
        """True once the terminal frame has been delivered or the stream closed."""
        return self._finished

    @property
    def canceled(self) -> bool:
        return self._canceled

    def __aiter__(self) -> FrameStream:
        return self

    async def __anext__(self) -> StreamFrame:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None and not self._canceled:
            self._task = asyncio.create_task(self._produce())

        frame = await self._queue.get()
        self._queue.task_done()
        if frame.done:
            self._finished = True
            await self._join_producer()
        return frame

    async def _produce(self) -> None:
        iterator = _iterate(self._fragments)
        try:
            async for fragment in iterator:
                await self._queue.put(StreamFrame.partial(self.correlation_key, fragment))
                # Wait until the consumer has taken this frame
                await self._queue.join()
            terminal = StreamFrame.terminal(self.correlation_key, self._status)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Stream producer failed (key={self.correlation_key}): {e}")
            terminal = StreamFrame.failed(self.correlation_key, self._map_error(e))
        finally:
            await iterator.aclose()
        await self._queue.put(terminal)

    def cancel(self) -> None:
        """Stop the producer; the consumer's next frame is the CANCELED marker."""
        if self._finished or self._canceled:
            return
        self._canceled = True
        if self._task is not None:
            self._task.cancel()
        # Drop any partial frame still waiting so nothing follows the cancel
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._queue.put_nowait(StreamFrame.terminal(self.correlation_key, CANCELED_STATUS))
        logger.debug(f"Stream canceled (key={self.correlation_key})")

    async def aclose(self) -> None:
        """Close the stream without delivering further frames."""
        self._finished = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        await self._join_producer()

    async def _join_producer(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})


class FrameReader:
    """Forward-only, non-restartable view over received frames.

    Yields every frame including the terminal one, then stops, even if the
    underlying source has more data. A source that ends before a terminal
    frame raises TransportError.
    """

    def __init__(
        self,
        source: AsyncIterable[Any],
        on_close: Callable[[], Awaitable[None]] | None = None,
        request_id: str | int | None = None,
    ) -> None:
        self.request_id = request_id
        self._source = source.__aiter__()
        self._on_close = on_close
        self._done = False
        self._key: str | int | None = None
        self.terminal: StreamFrame | None = None

    @property
    def done(self) -> bool:
        return self._done

    def __aiter__(self) -> FrameReader:
        return self

    async def __anext__(self) -> StreamFrame:
        if self._done:
            raise StopAsyncIteration

        try:
            raw = await self._source.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise TransportError("Stream closed before completion marker") from None
        except BaseException:
            await self.aclose()
            raise

        try:
            frame = StreamFrame.from_wire(raw)
            if self._key is None:
                self._key = frame.correlation_key
            elif frame.correlation_key != self._key:
                raise ProtocolError(
                    "Stream frame for a different correlation key",
                    {"expected": self._key, "received": frame.correlation_key},
                )
        except ProtocolError:
            await self.aclose()
            raise

        if frame.done:
            self.terminal = frame
            await self.aclose()
        return frame

    async def aclose(self) -> None:
        """Stop reading and release the source."""
        if self._done:
            return
        self._done = True
        close = getattr(self._source, "aclose", None)
        if close is not None:
            await close()
        if self._on_close is not None:
            await self._on_close()

    async def results(self) -> AsyncIterator[Any]:
        """Yield only the partial results; raise if the stream ends in error."""
        async for frame in self:
            if not frame.done:
                yield frame.partial_result
            elif frame.error is not None:
                raise ARCError.from_error_object(frame.error)


async def collect_frames(frames: AsyncIterable[StreamFrame]) -> list[StreamFrame]:
    """Drain a frame stream into a list (terminal frame included)."""
    return [frame async for frame in frames]


def frames_from_response(response: ResponseEnvelope) -> list[StreamFrame]:
    """Express a unary response as the equivalent frame sequence.

    Used when a caller asked for a stream but the agent answered with a
    single envelope (e.g. a validation error, or a non-streaming handler).
    """
    key = response.id if response.id is not None else "unknown"
    if response.error is not None:
        return [StreamFrame.failed(key, response.error)]
    return [
        StreamFrame.partial(key, response.result),
        StreamFrame.terminal(key, _status_of(response.result)),
    ]


def _status_of(result: Any) -> str:
    if isinstance(result, dict):
        for key in ("chat", "task"):
            obj = result.get(key)
            if isinstance(obj, dict) and isinstance(obj.get("status"), str):
                return obj["status"]
    return TaskStatus.COMPLETED.value


# =============================================================================
# Wire encodings
# =============================================================================


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def frame_to_sse(frame: StreamFrame) -> str:
    """SSE format: `event: stream|done` then `data: {json}`, blank line."""
    event = "done" if frame.done else "stream"
    return f"event: {event}\ndata: {_dumps(frame.to_wire())}\n\n"


async def frames_to_sse(frames: AsyncIterable[StreamFrame]) -> AsyncIterator[bytes]:
    """Convert frames to SSE (UTF-8 encoded)."""
    async for frame in frames:
        yield frame_to_sse(frame).encode("utf-8")


async def frames_to_ndjson(frames: AsyncIterable[StreamFrame]) -> AsyncIterator[bytes]:
    """Convert frames to newline-delimited JSON (UTF-8 encoded)."""
    async for frame in frames:
        yield (_dumps(frame.to_wire()) + "\n").encode("utf-8")


async def parse_sse_lines(lines: AsyncIterable[str]) -> AsyncIterator[dict[str, Any]]:
    """Parse SSE text lines into frame dicts.

    Multiple `data:` lines of one event are joined with newlines. Comment
    lines (starting with ":") and events without data are skipped.
    """
    data_lines: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data_lines:
                payload = "\n".join(data_lines)
                data_lines = []
                try:
                    yield json.loads(payload)
                except json.JSONDecodeError as e:
                    raise ProtocolError(f"Invalid SSE payload: {e}") from e
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip(" "))
    if data_lines:
        try:
            yield json.loads("\n".join(data_lines))
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid SSE payload: {e}") from e


async def parse_ndjson_lines(lines: AsyncIterable[str]) -> AsyncIterator[dict[str, Any]]:
    """Parse newline-delimited JSON lines into frame dicts."""
    async for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid NDJSON line: {e}") from e

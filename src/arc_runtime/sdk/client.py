"""ARC client.

Sends requests to other agents through any ClientTransport and correlates
the replies:

    client = ARCClient(HTTPClientTransport(ClientConfig(endpoint=url, token=t)),
                       sender="client-app-01", default_target="document-analyzer-01")

    result = await client.task.create("Analyze the quarterly report")

    reader = await client.chat.start("Hello", stream=True)
    async for text in reader.results():
        print(text, end="")

Retry policy is left to the caller; ARCError.retryable tells whether a
failure is worth retrying.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from ..config import ClientConfig
from ..protocol.envelope import RequestEnvelope, encode_request
from ..protocol.errors import ARCError, TransportError
from ..protocol.methods import MethodName
from ..protocol.streaming import FrameReader
from ..protocol.types import (
    ChatEndParams,
    ChatMessageParams,
    ChatStartParams,
    Message,
    Priority,
    TaskCancelParams,
    TaskCreateParams,
    TaskEventType,
    TaskInfoParams,
    TaskNotificationParams,
    TaskSendParams,
    TaskSubscribeParams,
)
from .correlation import (
    DEFAULT_TIMEOUT,
    ARCResponseError,
    CallState,
    CorrelationTracker,
    PendingCall,
    UndeliverableError,
)
from .transport import ClientTransport, FrameSource, HTTPClientTransport

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _as_message(message: Message | str) -> Message:
    if isinstance(message, Message):
        return message
    return Message.user_text(message)


async def _frames(source: FrameSource, pending: PendingCall) -> AsyncIterator[Any]:
    """Raw frames of a streamed call; raises once the call has timed out."""
    frames = source.__aiter__()
    try:
        async for raw in frames:
            if pending.state == CallState.TIMED_OUT:
                raise pending.exception
            yield raw
        if pending.state == CallState.TIMED_OUT:
            raise pending.exception
    finally:
        close = getattr(frames, "aclose", None)
        if close is not None:
            await close()


class ARCClient:
    """Client for calling ARC agents.

    Each call is registered with the correlation tracker before it is sent,
    delivered on a background task, and settled by the reply, its deadline
    or cancel().
    """

    def __init__(
        self,
        transport: ClientTransport,
        sender: str,
        default_target: str | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
        tracker: CorrelationTracker | None = None,
    ) -> None:
        self.transport = transport
        self.sender = sender
        self.default_target = default_target
        self.timeout = timeout
        self.tracker = tracker or CorrelationTracker()
        self._deliveries: dict[tuple[str | int, int], asyncio.Task[None]] = {}
        self._streams: dict[tuple[str | int, int], FrameSource] = {}

        self.task = TaskAPI(self)
        self.chat = ChatAPI(self)

    def _target(self, target: str | None) -> str:
        target = target or self.default_target
        if not target:
            raise ValueError("No target agent given and no default target configured")
        return target

    def build_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        target: str | None = None,
        trace_id: str | None = None,
        request_id: str | int | None = None,
    ) -> RequestEnvelope:
        return encode_request(
            method,
            self.sender,
            self._target(target),
            params,
            trace_id=trace_id,
            request_id=request_id,
        )

    # =========================================================================
    # Unary calls
    # =========================================================================

    def send(self, request: RequestEnvelope, timeout: float | None = _UNSET) -> PendingCall:
        """Register and deliver a request; returns immediately.

        Must be called from a running event loop.
        """
        timeout = self.timeout if timeout is _UNSET else timeout
        pending = self.tracker.register(request, timeout=timeout, on_complete=self._on_call_complete)
        key = (pending.id, pending.generation)
        self._deliveries[key] = asyncio.create_task(self._deliver(pending))
        return pending

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        target: str | None = None,
        trace_id: str | None = None,
        request_id: str | int | None = None,
        timeout: float | None = _UNSET,
    ) -> Any:
        """Send one request and wait for its result.

        Raises:
            ARCResponseError: The agent replied with an error
            CallTimeoutError, CallCanceledError, UndeliverableError
        """
        request = self.build_request(
            method, params, target=target, trace_id=trace_id, request_id=request_id
        )
        logger.debug(f"Calling {method} on {request.target} (id={request.id})")
        return await self.send(request, timeout).wait()

    async def _deliver(self, pending: PendingCall) -> None:
        request = pending.request
        try:
            raw = await self.transport.send(request)
        except UndeliverableError as e:
            self.tracker.mark_undeliverable(request.id, e, pending.generation)
        except ARCError as e:
            self.tracker.fail(request.id, e, pending.generation)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Transport failure for {request.id}: {e}")
            error = TransportError(f"Transport failure: {e}")
            error.__cause__ = e
            self.tracker.fail(request.id, error, pending.generation)
        else:
            self.tracker.resolve(raw, generation=pending.generation, request_id=request.id)

    def _on_call_complete(self, pending: PendingCall) -> None:
        key = (pending.id, pending.generation)
        task = self._deliveries.pop(key, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            # Settled by timeout or cancel; stop waiting on the transport
            task.cancel()

        source = self._streams.pop(key, None)
        if source is not None and pending.state in (CallState.CANCELED, CallState.TIMED_OUT):
            source.cancel()

    # =========================================================================
    # Streaming calls
    # =========================================================================

    async def stream(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        target: str | None = None,
        trace_id: str | None = None,
        request_id: str | int | None = None,
        timeout: float | None = _UNSET,
    ) -> FrameReader:
        """Send a request whose reply is streamed.

        The returned reader yields every frame including the terminal one.
        cancel(request_id) stops the producer; the reader then ends with a
        CANCELED frame. The deadline covers the whole stream and defaults to
        the client timeout; when it passes the producer is stopped and the
        reader raises CallTimeoutError.
        """
        timeout = self.timeout if timeout is _UNSET else timeout
        request = self.build_request(
            method, params, target=target, trace_id=trace_id, request_id=request_id
        )
        pending = self.tracker.register(request, timeout=timeout, on_complete=self._on_call_complete)
        key = (pending.id, pending.generation)

        try:
            source = await self.transport.open_stream(request)
        except UndeliverableError as e:
            self.tracker.mark_undeliverable(request.id, e, pending.generation)
            raise
        except BaseException as e:
            if isinstance(e, Exception):
                self.tracker.fail(request.id, e, pending.generation)
            else:
                self.tracker.cancel(request.id, pending.generation)
            raise

        if pending.done:
            # Canceled or timed out while the request was in flight
            source.cancel()
        else:
            self._streams[key] = source

        reader: FrameReader

        async def on_close() -> None:
            await source.aclose()
            if pending.done:
                return
            terminal = reader.terminal
            if terminal is None:
                self.tracker.fail(
                    request.id,
                    TransportError("Stream closed before completion marker"),
                    pending.generation,
                )
            elif terminal.error is not None:
                self.tracker.fail(
                    request.id,
                    ARCError.from_error_object(terminal.error),
                    pending.generation,
                )
            else:
                self.tracker.complete(
                    request.id, {"status": terminal.status}, pending.generation
                )

        reader = FrameReader(_frames(source, pending), on_close=on_close, request_id=request.id)
        return reader

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(self, request_id: str | int) -> bool:
        """Cancel an outstanding call or stream.

        Returns:
            False if no such call is pending
        """
        return self.tracker.cancel(request_id)

    async def close(self) -> None:
        """Cancel everything outstanding and close the transport."""
        self.tracker.cancel_all()
        await self.transport.close()

    async def __aenter__(self) -> ARCClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


@dataclass
class TaskAPI:
    """task.* methods."""

    _client: ARCClient

    async def create(
        self,
        initial_message: Message | str,
        *,
        target: str | None = None,
        priority: Priority | str | None = None,
        metadata: dict[str, Any] | None = None,
        trace_id: str | None = None,
    ) -> Any:
        params = TaskCreateParams(
            initial_message=_as_message(initial_message),
            priority=priority,
            metadata=metadata,
        )
        return await self._client.call(
            MethodName.TASK_CREATE.value, params.to_wire(), target=target, trace_id=trace_id
        )

    async def send(
        self,
        task_id: str,
        message: Message | str,
        *,
        target: str | None = None,
        trace_id: str | None = None,
    ) -> Any:
        params = TaskSendParams(task_id=task_id, message=_as_message(message))
        return await self._client.call(
            MethodName.TASK_SEND.value, params.to_wire(), target=target, trace_id=trace_id
        )

    async def info(
        self,
        task_id: str,
        *,
        target: str | None = None,
        include_messages: bool | None = None,
        include_artifacts: bool | None = None,
        trace_id: str | None = None,
    ) -> Any:
        params = TaskInfoParams(
            task_id=task_id,
            include_messages=include_messages,
            include_artifacts=include_artifacts,
        )
        return await self._client.call(
            MethodName.TASK_INFO.value, params.to_wire(), target=target, trace_id=trace_id
        )

    async def cancel(
        self,
        task_id: str,
        *,
        target: str | None = None,
        reason: str | None = None,
        trace_id: str | None = None,
    ) -> Any:
        params = TaskCancelParams(task_id=task_id, reason=reason)
        return await self._client.call(
            MethodName.TASK_CANCEL.value, params.to_wire(), target=target, trace_id=trace_id
        )

    async def subscribe(
        self,
        task_id: str,
        callback_url: str,
        *,
        target: str | None = None,
        events: list[TaskEventType | str] | None = None,
        trace_id: str | None = None,
    ) -> Any:
        params = TaskSubscribeParams(task_id=task_id, callback_url=callback_url, events=events)
        return await self._client.call(
            MethodName.TASK_SUBSCRIBE.value, params.to_wire(), target=target, trace_id=trace_id
        )

    async def notification(
        self,
        task_id: str,
        event: TaskEventType | str,
        data: dict[str, Any] | None = None,
        *,
        target: str | None = None,
        trace_id: str | None = None,
    ) -> Any:
        """Tell the calling agent about a task lifecycle event.

        The reply carries no information the sender needs to act on.
        """
        params = TaskNotificationParams(task_id=task_id, event=event, data=data or {})
        return await self._client.call(
            MethodName.TASK_NOTIFICATION.value, params.to_wire(), target=target, trace_id=trace_id
        )


@dataclass
class ChatAPI:
    """chat.* methods. start() and message() can stream their reply."""

    _client: ARCClient

    async def start(
        self,
        initial_message: Message | str,
        *,
        target: str | None = None,
        chat_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        stream: bool = False,
        trace_id: str | None = None,
    ) -> Any:
        """Start a chat.

        Returns:
            The chat result, or a FrameReader when stream=True
        """
        params = ChatStartParams(
            initial_message=_as_message(initial_message),
            chat_id=chat_id,
            metadata=metadata,
            stream=stream or None,
        )
        if stream:
            return await self._client.stream(
                MethodName.CHAT_START.value, params.to_wire(), target=target, trace_id=trace_id
            )
        return await self._client.call(
            MethodName.CHAT_START.value, params.to_wire(), target=target, trace_id=trace_id
        )

    async def message(
        self,
        chat_id: str,
        message: Message | str,
        *,
        target: str | None = None,
        stream: bool = False,
        trace_id: str | None = None,
    ) -> Any:
        params = ChatMessageParams(
            chat_id=chat_id, message=_as_message(message), stream=stream or None
        )
        if stream:
            return await self._client.stream(
                MethodName.CHAT_MESSAGE.value, params.to_wire(), target=target, trace_id=trace_id
            )
        return await self._client.call(
            MethodName.CHAT_MESSAGE.value, params.to_wire(), target=target, trace_id=trace_id
        )

    async def end(
        self,
        chat_id: str,
        *,
        target: str | None = None,
        reason: str | None = None,
        trace_id: str | None = None,
    ) -> Any:
        params = ChatEndParams(chat_id=chat_id, reason=reason)
        return await self._client.call(
            MethodName.CHAT_END.value, params.to_wire(), target=target, trace_id=trace_id
        )


def create_http_client(
    config: ClientConfig,
    default_target: str | None = None,
) -> ARCClient:
    """Create a client talking HTTP to a single endpoint."""
    return ARCClient(
        HTTPClientTransport(config),
        sender=config.sender,
        default_target=default_target,
        timeout=config.timeout,
    )


__all__ = [
    "ARCClient",
    "ARCResponseError",
    "ChatAPI",
    "TaskAPI",
    "create_http_client",
]

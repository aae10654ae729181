"""Client-side correlation of requests and replies.

Every outgoing request is registered before it is sent and settles exactly
once:

    PENDING -> FULFILLED      valid reply carrying a result
            -> FAILED         valid reply carrying an error, malformed reply,
                              or a transport failure after delivery
            -> TIMED_OUT      no reply before the call's deadline
            -> CANCELED       caller aborted
            -> UNDELIVERABLE  the request never reached the agent

A settled call is removed from the table. Replies for ids that are unknown,
already settled, or that belong to an older generation of the same id are
logged and dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from ..protocol.envelope import RequestEnvelope, ResponseEnvelope, validate_response
from ..protocol.errors import ARCError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class CallState(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELED = "canceled"
    UNDELIVERABLE = "undeliverable"


class ARCResponseError(ARCError):
    """The agent answered with an error envelope."""

    def __init__(self, response: ResponseEnvelope) -> None:
        error = response.error
        if error is None:
            raise ValueError(f"Response {response.id} carries no error")
        super().__init__(error.message, error.details, code=error.code)
        self.response = response


class CorrelationError(Exception):
    """A call ended without a reply from the agent."""

    def __init__(self, message: str, request_id: str | int | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class CallTimeoutError(CorrelationError, TimeoutError):
    pass


class CallCanceledError(CorrelationError):
    pass


class UndeliverableError(CorrelationError, ConnectionError):
    """The request could not be delivered (connection refused, DNS failure)."""


class PendingCall:
    """One outstanding request."""

    def __init__(
        self,
        request: RequestEnvelope,
        generation: int,
        on_complete: Callable[[PendingCall], Any] | None = None,
    ) -> None:
        self.request = request
        self.generation = generation
        self.state = CallState.PENDING
        self.response: ResponseEnvelope | None = None
        self.result: Any = None
        self.exception: BaseException | None = None

        self._future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._timer: asyncio.TimerHandle | None = None
        self._callbacks: list[Callable[[PendingCall], Any]] = []
        if on_complete is not None:
            self._callbacks.append(on_complete)

    @property
    def id(self) -> str | int:
        return self.request.id

    @property
    def done(self) -> bool:
        return self.state != CallState.PENDING

    def add_done_callback(self, callback: Callable[[PendingCall], Any]) -> None:
        """Run `callback` once the call settles (immediately if it already has)."""
        if self.done:
            callback(self)
        else:
            self._callbacks.append(callback)

    async def wait(self) -> Any:
        """Wait for the call to settle.

        Returns:
            The result payload

        Raises:
            ARCResponseError: The agent replied with an error
            CallTimeoutError: No reply before the deadline
            CallCanceledError: The call was canceled
            UndeliverableError: The request was never delivered
            ARCError: The reply was malformed or unusable
        """
        # shield: a caller giving up on waiting does not settle the call
        return await asyncio.shield(self._future)

    def _settle(
        self,
        state: CallState,
        result: Any = None,
        exception: BaseException | None = None,
    ) -> bool:
        if self.done:
            return False

        self.state = state
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if exception is not None:
            self.exception = exception
            self._future.set_exception(exception)
            # Marks the exception as retrieved for calls nobody waits on
            self._future.add_done_callback(lambda f: f.exception())
        else:
            self.result = result
            self._future.set_result(result)

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.exception(f"Completion callback failed for call {self.id}: {e}")
        return True

    def __repr__(self) -> str:
        return f"PendingCall(id={self.id!r}, generation={self.generation}, state={self.state.value})"


class CorrelationTracker:
    """Id-keyed table of outstanding calls.

    Usage:
        tracker = CorrelationTracker()
        call = tracker.register(request, timeout=30.0)
        transport.send(request)
        ...
        tracker.resolve(raw_reply)       # from the transport
        result = await call.wait()       # in the caller
    """

    def __init__(self) -> None:
        self._calls: dict[str | int, PendingCall] = {}
        self._generations = itertools.count(1)

    def register(
        self,
        request: RequestEnvelope,
        timeout: float | None = DEFAULT_TIMEOUT,
        on_complete: Callable[[PendingCall], Any] | None = None,
    ) -> PendingCall:
        """Start tracking a request.

        Args:
            request: The request about to be sent
            timeout: Seconds to wait for a reply; None waits forever
            on_complete: Called once when the call settles

        Raises:
            ValueError: If a call with the same id is still outstanding
        """
        if request.id in self._calls:
            raise ValueError(f"Request id already outstanding: {request.id!r}")

        call = PendingCall(request, next(self._generations), on_complete)
        self._calls[request.id] = call
        if timeout is not None:
            loop = asyncio.get_running_loop()
            call._timer = loop.call_later(timeout, self._expire, request.id, call.generation, timeout)
        return call

    def get(self, request_id: str | int) -> PendingCall | None:
        return self._calls.get(request_id)

    def outstanding(self) -> list[PendingCall]:
        return list(self._calls.values())

    def __len__(self) -> int:
        return len(self._calls)

    # =========================================================================
    # Transitions
    # =========================================================================

    def resolve(
        self,
        raw: Any,
        generation: int | None = None,
        request_id: str | int | None = None,
    ) -> bool:
        """Settle a call from a received reply.

        Args:
            raw: Deserialized reply envelope
            generation: Only settle the call if it is this generation
            request_id: The call the reply answers, when the transport knows
                it (request/response transports). A reply carrying another
                id then fails the call instead of being discarded.

        Returns:
            True if the reply settled a call, False if it was discarded
        """
        if request_id is None:
            request_id = raw.get("id") if isinstance(raw, dict) else None
        call = self._lookup(request_id, generation, "reply")
        if call is None:
            return False

        try:
            response = validate_response(raw, call.id)
        except ARCError as e:
            logger.warning(f"Malformed reply for call {call.id}: {e.message}")
            return self._settle(call, CallState.FAILED, exception=e)

        call.response = response
        if response.error is not None:
            return self._settle(call, CallState.FAILED, exception=ARCResponseError(response))
        return self._settle(call, CallState.FULFILLED, result=response.result)

    def complete(self, request_id: str | int, result: Any, generation: int | None = None) -> bool:
        """Settle a call as fulfilled without a reply envelope (stream end)."""
        call = self._lookup(request_id, generation, "completion")
        if call is None:
            return False
        return self._settle(call, CallState.FULFILLED, result=result)

    def fail(
        self,
        request_id: str | int,
        exception: BaseException,
        generation: int | None = None,
    ) -> bool:
        """Settle a call as failed (delivery happened, reply unusable)."""
        call = self._lookup(request_id, generation, "failure")
        if call is None:
            return False
        return self._settle(call, CallState.FAILED, exception=exception)

    def mark_undeliverable(
        self,
        request_id: str | int,
        exception: BaseException | None = None,
        generation: int | None = None,
    ) -> bool:
        call = self._lookup(request_id, generation, "undeliverable notice")
        if call is None:
            return False
        if not isinstance(exception, UndeliverableError):
            reason = f": {exception}" if exception is not None else ""
            wrapped = UndeliverableError(f"Request could not be delivered{reason}", request_id)
            if exception is not None:
                wrapped.__cause__ = exception
            exception = wrapped
        return self._settle(call, CallState.UNDELIVERABLE, exception=exception)

    def cancel(self, request_id: str | int, generation: int | None = None) -> bool:
        """Abort a pending call. Returns False if it had already settled."""
        call = self._calls.get(request_id)
        if call is None or (generation is not None and call.generation != generation):
            return False
        return self._settle(
            call,
            CallState.CANCELED,
            exception=CallCanceledError(f"Call {request_id!r} canceled", request_id),
        )

    def cancel_all(self) -> int:
        """Cancel every outstanding call; returns how many were canceled."""
        canceled = 0
        for call in list(self._calls.values()):
            if self.cancel(call.id, call.generation):
                canceled += 1
        return canceled

    def _expire(self, request_id: str | int, generation: int, timeout: float) -> None:
        call = self._calls.get(request_id)
        if call is None or call.generation != generation:
            return
        logger.info(f"Call {request_id!r} timed out after {timeout}s")
        self._settle(
            call,
            CallState.TIMED_OUT,
            exception=CallTimeoutError(f"No reply within {timeout}s", request_id),
        )

    def _lookup(
        self,
        request_id: Any,
        generation: int | None,
        what: str,
    ) -> PendingCall | None:
        call = self._calls.get(request_id) if isinstance(request_id, (str, int)) else None
        if call is None:
            logger.warning(f"Discarding {what} for unknown or settled call {request_id!r}")
            return None
        if generation is not None and call.generation != generation:
            logger.warning(
                f"Discarding {what} for call {request_id!r} from generation "
                f"{generation} (current {call.generation})"
            )
            return None
        return call

    def _settle(self, call: PendingCall, state: CallState, **outcome: Any) -> bool:
        if self._calls.get(call.id) is call:
            del self._calls[call.id]
        return call._settle(state, **outcome)

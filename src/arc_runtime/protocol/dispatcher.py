"""ARC engine - transport-agnostic request dispatch.

Every transport hands the engine an already-deserialized request and gets
back either one response envelope or a frame stream:

    engine = ARCEngine(EngineConfig(agent_id="agent-1"))

    @engine.method("task.create")
    async def create_task(params, context):
        return {"taskId": "t1", "status": "SUBMITTED"}

    reply = await engine.handle(raw_request, credential="token")
    if isinstance(reply, FrameStream):
        async for frame in reply:
            transport.send(frame.to_wire())
    else:
        transport.send(reply.to_wire())

Pipeline (the first failing step answers the request):
    1. envelope validation
    2. target must be this agent
    3. method must be registered
    4. capability authorization (when enabled)
    5. handler call

Errors never escape handle(); every failure becomes an error envelope.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from pydantic import ValidationError

from .envelope import (
    PROTOCOL_VERSION,
    RequestEnvelope,
    ResponseEnvelope,
    build_error_response,
    build_response,
    validate_request,
)
from .errors import (
    ARCError,
    AuthenticationRequiredError,
    ErrorObject,
    InternalError,
    InvalidParamsError,
    ParseError,
    RoutingError,
    SecurityError,
)
from .registry import AuthDecision, Handler, MethodRegistry
from .streaming import FrameStream, StreamResult, default_terminal_status, is_stream
from .types import shape_result

if TYPE_CHECKING:
    from ..config import EngineConfig

logger = logging.getLogger(__name__)

# validate(credential) -> decision, sync or async
CredentialValidator = Callable[
    [str],
    Union[AuthDecision, Mapping[str, Any], Awaitable[Union[AuthDecision, Mapping[str, Any]]]],
]

EngineReply = Union[ResponseEnvelope, FrameStream]


@dataclass(frozen=True)
class RequestContext:
    """Passed to every handler alongside the params."""

    request_id: str | int
    method: str
    sender: str
    target: str
    trace_id: str | None
    raw_request: dict[str, Any]
    auth: AuthDecision | None = None
    credential: str | None = None

    @property
    def subject(self) -> str | None:
        return self.auth.subject if self.auth else None


class ARCEngine:
    """Dispatches ARC requests for one local agent identity."""

    def __init__(
        self,
        config: EngineConfig,
        validator: CredentialValidator | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Agent identity, authorization switch and capability map
            validator: Turns a bearer credential into an AuthDecision
        """
        self.config = config
        self._validator = validator
        self.registry = MethodRegistry(
            enable_auth=config.enable_auth,
            capability_map=config.required_capabilities,
        )
        if config.enable_auth and validator is None:
            logger.warning(
                "Authorization enabled without a credential validator; "
                "methods with capability requirements will be refused"
            )

    @property
    def agent_id(self) -> str:
        return self.config.agent_id

    # =========================================================================
    # Registration
    # =========================================================================

    def register(
        self,
        name: str,
        handler: Handler,
        required_capabilities: Iterable[str] | None = None,
    ) -> None:
        self.registry.register(name, handler, required_capabilities)

    def method(
        self,
        name: str,
        required_capabilities: Iterable[str] | None = None,
    ) -> Callable[[Handler], Handler]:
        return self.registry.method(name, required_capabilities)

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def handle(self, raw: Any, credential: str | None = None) -> EngineReply:
        """Process one request.

        Args:
            raw: Deserialized request envelope
            credential: Bearer credential from the transport, if any

        Returns:
            A response envelope, or a FrameStream when the handler streams
        """
        try:
            request = validate_request(raw)
        except ARCError as e:
            logger.info(f"Rejected malformed request: {e.message}")
            return build_error_response(raw, self.agent_id, e.to_error_object())

        if self.config.log_requests:
            logger.info(f"ARC request: {request.method} (id={request.id}, sender={request.sender})")
        else:
            logger.debug(f"Handling request: {request.method} (id={request.id}, sender={request.sender})")

        if request.target != self.agent_id:
            return self._error(
                request,
                RoutingError(
                    f"Agent not found: {request.target}",
                    {"requested": request.target, "current": self.agent_id},
                ),
            )

        try:
            handler = self.registry.resolve(request.method)
            decision = await self._authorize(request, credential)
        except ARCError as e:
            return self._error(request, e)

        context = RequestContext(
            request_id=request.id,
            method=request.method,
            sender=request.sender,
            target=request.target,
            trace_id=request.trace_id,
            raw_request=raw,
            auth=decision,
            credential=credential,
        )

        try:
            value = handler(request.params, context)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            return ResponseEnvelope(
                id=request.id,
                responder=self.agent_id,
                target=request.sender,
                error=self._map_exception(e, request),
                trace_id=request.trace_id,
            )

        if is_stream(value):
            return self._start_stream(request, value)

        return build_response(request, self.agent_id, result=shape_result(value, request.method))

    async def handle_json(self, body: bytes | str, credential: str | None = None) -> EngineReply:
        """Process a request still in JSON text form.

        Unparseable input yields a PARSE_ERROR envelope with a null id.
        """
        try:
            raw = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.info(f"Rejected unparseable request: {e}")
            return build_error_response(
                None,
                self.agent_id,
                ParseError("Parse error: Invalid JSON", {"reason": str(e)}).to_error_object(),
            )
        return await self.handle(raw, credential)

    async def _authorize(
        self,
        request: RequestEnvelope,
        credential: str | None,
    ) -> AuthDecision | None:
        """Compute the decision for this request and enforce requirements.

        Raises:
            AuthenticationRequiredError: No credential for a protected method
            SecurityError: Granted capabilities do not cover the requirement
        """
        required = self.registry.required_capabilities(request.method)
        enforce = self.registry.enable_auth and bool(required)

        if credential is None:
            if enforce:
                raise AuthenticationRequiredError(
                    "Authentication required",
                    {"required": sorted(required)},
                )
            return None

        decision = await self._validate_credential(credential)
        outcome = self.registry.authorize(request.method, decision)
        if not outcome.allowed:
            logger.info(
                f"Refused {request.method} (id={request.id}): missing {list(outcome.missing)}"
            )
            raise SecurityError(
                "Insufficient capability",
                {"required": list(outcome.required), "granted": list(outcome.granted)},
            )
        return decision

    async def _validate_credential(self, credential: str) -> AuthDecision:
        if self._validator is None:
            return AuthDecision(authenticated=False)
        try:
            result = self._validator(credential)
            if inspect.isawaitable(result):
                result = await result
        except ARCError:
            raise
        except Exception as e:
            # Which check failed is not reported to the caller
            logger.warning(f"Credential validation failed: {e}")
            return AuthDecision(authenticated=False)
        return AuthDecision.from_value(result)

    def _start_stream(self, request: RequestEnvelope, value: Any) -> FrameStream:
        if isinstance(value, StreamResult):
            fragments = value.fragments
            status = value.status
            key = value.correlation_key
        else:
            fragments, status, key = value, None, None

        logger.debug(f"Streaming reply for {request.method} (id={request.id})")
        return FrameStream(
            fragments,
            correlation_key=key if key is not None else request.id,
            status=status or default_terminal_status(request.method),
            error_mapper=lambda exc: self._map_exception(exc, request),
        )

    # =========================================================================
    # Errors
    # =========================================================================

    def _error(self, request: RequestEnvelope, error: ARCError) -> ResponseEnvelope:
        logger.debug(f"Request {request.id} failed: {error!r}")
        return build_response(request, self.agent_id, error=error.to_error_object())

    def _map_exception(self, exc: BaseException, request: RequestEnvelope) -> ErrorObject:
        """Translate a handler exception into the wire error.

        ARCError passes through unchanged. Anything else is reported as a
        generic internal error; the exception text is only included in
        debug mode.
        """
        if isinstance(exc, ARCError):
            return exc.to_error_object()

        if isinstance(exc, ValidationError):
            return InvalidParamsError(
                "Invalid parameters",
                {"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ).to_error_object()

        logger.exception(f"Error handling request {request.id} ({request.method}): {exc}")
        details = None
        if self.config.debug:
            details = {"exception": type(exc).__name__, "message": str(exc)}
        return InternalError(details=details).to_error_object()

    # =========================================================================
    # Introspection
    # =========================================================================

    def agent_info(self) -> dict[str, Any]:
        """Describe this agent for the /agent-info endpoint."""
        return {
            "agentId": self.config.agent_id,
            "name": self.config.name or self.config.agent_id,
            "description": self.config.description,
            "version": self.config.version,
            "protocolVersion": PROTOCOL_VERSION,
            "status": "active",
            "endpoints": {"arc": self.config.endpoint_path},
            "supportedMethods": self.registry.methods(),
            "authEnabled": self.config.enable_auth,
        }

"""ARC protocol engine.

Transport-agnostic core shared by the HTTP adapter and the client SDK.

Key concepts:
- Envelopes: requests addressed agent-to-agent, responses correlated by id
- Errors: stable numeric codes grouped into namespaces
- Registry: method name -> handler, with per-method capability requirements
- Engine: validation -> routing -> authorization -> handler -> response
- Streams: partial results as frames, ended by one terminal frame
"""

from .dispatcher import ARCEngine, RequestContext
from .envelope import (
    PROTOCOL_VERSION,
    RequestEnvelope,
    ResponseEnvelope,
    build_error_response,
    build_response,
    encode_request,
    new_request_id,
    validate_request,
    validate_response,
)
from .errors import (
    ARCError,
    ErrorCode,
    ErrorNamespace,
    ErrorObject,
    compose_code,
    is_retryable,
    make_error,
    namespace_of,
)
from .methods import Capability, MethodName
from .registry import AuthDecision, AuthorizationOutcome, MethodRegistry, method_handler
from .streaming import FrameReader, FrameStream, StreamFrame, StreamResult

__all__ = [
    # Envelopes
    "PROTOCOL_VERSION",
    "RequestEnvelope",
    "ResponseEnvelope",
    "encode_request",
    "new_request_id",
    "validate_request",
    "validate_response",
    "build_response",
    "build_error_response",
    # Errors
    "ARCError",
    "ErrorCode",
    "ErrorNamespace",
    "ErrorObject",
    "compose_code",
    "make_error",
    "namespace_of",
    "is_retryable",
    # Methods & registry
    "MethodName",
    "Capability",
    "MethodRegistry",
    "AuthDecision",
    "AuthorizationOutcome",
    "method_handler",
    # Engine
    "ARCEngine",
    "RequestContext",
    # Streaming
    "StreamFrame",
    "StreamResult",
    "FrameStream",
    "FrameReader",
]

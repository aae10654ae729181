"""Error taxonomy for the ARC protocol.

Every failure that reaches the wire is an ErrorObject with a stable numeric
code. Codes are grouped into namespaces, each owning a contiguous block of
1000 negative integers:

- TRANSPORT: -32000 .. -32999 (JSON-RPC compatible parse/transport codes)
- ROUTING:   -41000 .. -41999 (agent addressing)
- TASK:      -42000 .. -42999 (task lifecycle)
- CHAT:      -43000 .. -43999 (chat lifecycle)
- SECURITY:  -44000 .. -44999 (authentication / capabilities)
- PROTOCOL:  -45000 .. -45999 (envelope structure)

A composite code is `base - local_code`, so -32700 is local code 700 in the
TRANSPORT namespace and -44003 is local code 3 in SECURITY.

Handlers raise ARCError (or a subclass) to send a specific error to the
caller. Anything else raised by a handler is wrapped as INTERNAL_ERROR by
the dispatcher.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

NAMESPACE_BLOCK_SIZE = 1000


class ErrorNamespace(str, Enum):
    """Disjoint code blocks."""

    TRANSPORT = "transport"
    ROUTING = "routing"
    TASK = "task"
    CHAT = "chat"
    SECURITY = "security"
    PROTOCOL = "protocol"


NAMESPACE_BASES: dict[ErrorNamespace, int] = {
    ErrorNamespace.TRANSPORT: -32000,
    ErrorNamespace.ROUTING: -41000,
    ErrorNamespace.TASK: -42000,
    ErrorNamespace.CHAT: -43000,
    ErrorNamespace.SECURITY: -44000,
    ErrorNamespace.PROTOCOL: -45000,
}


class ErrorCode(IntEnum):
    """All codes produced or recognized by the runtime."""

    # Transport / parse (JSON-RPC block)
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    TRANSPORT_ERROR = -32001
    SERVICE_UNAVAILABLE = -32002

    # Agent routing
    AGENT_NOT_FOUND = -41001
    AGENT_UNAVAILABLE = -41002
    AGENT_TIMEOUT = -41003

    # Task lifecycle
    TASK_NOT_FOUND = -42001
    TASK_ALREADY_COMPLETED = -42002
    TASK_ALREADY_CANCELED = -42003
    TASK_EXECUTION_FAILED = -42004

    # Chat lifecycle
    CHAT_NOT_FOUND = -43001
    CHAT_ALREADY_CLOSED = -43002
    CHAT_TIMEOUT = -43003
    CHAT_PARTICIPANT_LIMIT = -43004
    INVALID_CHAT_MESSAGE = -43005
    CHAT_BUFFER_OVERFLOW = -43006

    # Security
    AUTHENTICATION_REQUIRED = -44001
    INVALID_CREDENTIAL = -44002
    INSUFFICIENT_CAPABILITY = -44003

    # Envelope structure
    INVALID_VERSION = -45001
    INVALID_METHOD_FORMAT = -45002
    INVALID_RESPONSE = -45003
    RESPONSE_ID_MISMATCH = -45004


RETRYABLE_CODES = frozenset(
    {
        ErrorCode.TRANSPORT_ERROR,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.AGENT_UNAVAILABLE,
        ErrorCode.AGENT_TIMEOUT,
    }
)


class ErrorObject(BaseModel):
    """Wire error payload: {code, message, details?}."""

    model_config = ConfigDict(frozen=True)

    code: int
    message: str
    details: Any = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


def compose_code(namespace: ErrorNamespace, local_code: int) -> int:
    """Map a namespace-local code to its composite wire code.

    Raises:
        ValueError: If local_code falls outside the namespace block
    """
    if not 0 <= local_code < NAMESPACE_BLOCK_SIZE:
        raise ValueError(
            f"Local code {local_code} outside namespace block "
            f"(0..{NAMESPACE_BLOCK_SIZE - 1})"
        )
    return NAMESPACE_BASES[namespace] - local_code


def namespace_of(code: int) -> ErrorNamespace | None:
    """Return the namespace owning a composite code, or None if unassigned."""
    for namespace, base in NAMESPACE_BASES.items():
        if base - NAMESPACE_BLOCK_SIZE < code <= base:
            return namespace
    return None


def make_error(
    namespace: ErrorNamespace,
    local_code: int,
    message: str,
    details: Any = None,
) -> ErrorObject:
    """Build an ErrorObject from a namespace-local code."""
    return ErrorObject(
        code=compose_code(namespace, local_code),
        message=message,
        details=details,
    )


def is_retryable(code: int) -> bool:
    """Whether a caller may retry a request that failed with `code`.

    Transport failures and agent availability problems are retryable;
    structural, security, and business errors are not.
    """
    return code in RETRYABLE_CODES


# =============================================================================
# Exceptions
# =============================================================================


class ARCError(Exception):
    """A taxonomy-shaped error.

    Raised by the codec, the registry and by handlers. The dispatcher passes
    instances through to the wire unchanged.
    """

    code: int = ErrorCode.INTERNAL_ERROR
    default_message: str = "Internal error"

    def __init__(
        self,
        message: str | None = None,
        details: Any = None,
        *,
        code: int | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        if code is not None:
            self.code = int(code)
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return is_retryable(self.code)

    def to_error_object(self) -> ErrorObject:
        return ErrorObject(code=int(self.code), message=self.message, details=self.details)

    @classmethod
    def from_error_object(cls, error: ErrorObject) -> ARCError:
        return cls(error.message, error.details, code=error.code)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={int(self.code)}, message={self.message!r})"


class ParseError(ARCError):
    code = ErrorCode.PARSE_ERROR
    default_message = "Parse error"


class InvalidRequestError(ARCError):
    code = ErrorCode.INVALID_REQUEST
    default_message = "Invalid request"


class MethodNotFoundError(ARCError):
    code = ErrorCode.METHOD_NOT_FOUND
    default_message = "Method not found"


class InvalidParamsError(ARCError):
    code = ErrorCode.INVALID_PARAMS
    default_message = "Invalid parameters"


class InternalError(ARCError):
    code = ErrorCode.INTERNAL_ERROR
    default_message = "Internal server error"


class TransportError(ARCError):
    """A request was delivered but no usable reply came back."""

    code = ErrorCode.TRANSPORT_ERROR
    default_message = "Transport error"


class ProtocolError(ARCError):
    code = ErrorCode.INVALID_RESPONSE
    default_message = "Protocol error"


class RoutingError(ARCError):
    code = ErrorCode.AGENT_NOT_FOUND
    default_message = "Agent not found"


class AgentUnavailableError(RoutingError):
    code = ErrorCode.AGENT_UNAVAILABLE
    default_message = "Agent not available"


class SecurityError(ARCError):
    code = ErrorCode.INSUFFICIENT_CAPABILITY
    default_message = "Insufficient capability"


class AuthenticationRequiredError(SecurityError):
    code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"


class InvalidCredentialError(SecurityError):
    """Raised by credential validators that reject a token outright."""

    code = ErrorCode.INVALID_CREDENTIAL
    default_message = "Invalid credential"


class TaskError(ARCError):
    code = ErrorCode.TASK_EXECUTION_FAILED
    default_message = "Task execution failed"


class TaskNotFoundError(TaskError):
    code = ErrorCode.TASK_NOT_FOUND
    default_message = "Task not found"


class TaskAlreadyCompletedError(TaskError):
    code = ErrorCode.TASK_ALREADY_COMPLETED
    default_message = "Task already completed"


class TaskAlreadyCanceledError(TaskError):
    code = ErrorCode.TASK_ALREADY_CANCELED
    default_message = "Task already canceled"


class ChatError(ARCError):
    code = ErrorCode.INVALID_CHAT_MESSAGE
    default_message = "Invalid chat message"


class ChatNotFoundError(ChatError):
    code = ErrorCode.CHAT_NOT_FOUND
    default_message = "Chat not found"


class ChatAlreadyClosedError(ChatError):
    code = ErrorCode.CHAT_ALREADY_CLOSED
    default_message = "Chat already closed"

"""Request and response envelopes.

Requests are sent by a caller agent to a target agent and carry a caller
chosen `id` used only for correlation:

    {
        "version": "1.0",
        "id": "req_abc123",
        "method": "task.create",
        "sender": "client-app-01",
        "target": "document-analyzer-01",
        "params": {"initialMessage": {...}},
        "traceId": "wf-42"
    }

Responses echo the `id`, swap the agent addresses and carry exactly one of
`result` / `error`:

    {
        "version": "1.0",
        "id": "req_abc123",
        "responder": "document-analyzer-01",
        "target": "client-app-01",
        "result": {"type": "task", "task": {...}},
        "error": null,
        "traceId": "wf-42"
    }

A `null` result or error is treated exactly like a missing key.
"""

from __future__ import annotations

import re
import uuid
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from .errors import ARCError, ErrorCode, ErrorObject, InvalidRequestError, ProtocolError

PROTOCOL_VERSION = "1.0"

REQUEST_FIELDS = ("version", "id", "method", "sender", "target", "params")
RESPONSE_FIELDS = ("version", "id", "responder", "target")

# <domain>.<verb>, e.g. task.create, chat.message
METHOD_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*(\.[A-Za-z][A-Za-z0-9_-]*)+$")

RequestId = Union[StrictStr, StrictInt]


def new_request_id() -> str:
    """Generate a request identifier."""
    return f"req_{uuid.uuid4().hex[:12]}"


class RequestEnvelope(BaseModel):
    """A request from one agent to another. Immutable once built."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, strict=True)

    version: StrictStr = PROTOCOL_VERSION
    id: RequestId = Field(default_factory=new_request_id)
    method: StrictStr
    sender: StrictStr
    target: StrictStr
    params: dict[str, Any] = Field(default_factory=dict)
    trace_id: StrictStr | None = Field(default=None, alias="traceId")

    @property
    def domain(self) -> str:
        """Method domain, e.g. "task" for "task.create"."""
        return self.method.split(".", 1)[0]

    def to_wire(self) -> dict[str, Any]:
        """Serialize for the wire; traceId is omitted when not supplied."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ResponseEnvelope(BaseModel):
    """A response correlated 1:1 with a request by `id`."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = PROTOCOL_VERSION
    id: RequestId | None
    responder: str
    target: str
    result: Any = None
    error: ErrorObject | None = None
    trace_id: str | None = Field(default=None, alias="traceId")

    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        """Serialize for the wire.

        Both `result` and `error` are always present, the unused one as null.
        """
        data: dict[str, Any] = {
            "version": self.version,
            "id": self.id,
            "responder": self.responder,
            "target": self.target,
            "result": self.result,
            "error": self.error.to_wire() if self.error else None,
        }
        if self.trace_id is not None:
            data["traceId"] = self.trace_id
        return data


# =============================================================================
# Encoding
# =============================================================================


def encode_request(
    method: str,
    sender: str,
    target: str,
    params: dict[str, Any] | None = None,
    trace_id: str | None = None,
    request_id: str | int | None = None,
) -> RequestEnvelope:
    """Build a request envelope, generating an id when none is given."""
    fields: dict[str, Any] = {
        "method": method,
        "sender": sender,
        "target": target,
        "params": params or {},
    }
    if request_id is not None:
        fields["id"] = request_id
    if trace_id is not None:
        fields["trace_id"] = trace_id
    return RequestEnvelope(**fields)


def build_response(
    request: RequestEnvelope,
    responder: str,
    result: Any = None,
    error: ErrorObject | None = None,
) -> ResponseEnvelope:
    """Build the response for a validated request.

    The response targets the original sender and echoes the trace id.
    """
    if error is None and result is None:
        raise ValueError("A response needs a result or an error")
    if error is not None and result is not None:
        raise ValueError("A response cannot carry both a result and an error")
    return ResponseEnvelope(
        id=request.id,
        responder=responder,
        target=request.sender,
        result=result,
        error=error,
        trace_id=request.trace_id,
    )


def build_error_response(
    raw: Any,
    responder: str,
    error: ErrorObject,
) -> ResponseEnvelope:
    """Build an error response for a request that may not have validated.

    Whatever correlation data can be recovered from the raw request is
    echoed back; the rest falls back to null / "unknown".
    """
    data = raw if isinstance(raw, dict) else {}

    request_id = data.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
        request_id = None
    sender = data.get("sender")
    trace_id = data.get("traceId")

    return ResponseEnvelope(
        id=request_id,
        responder=responder,
        target=sender if isinstance(sender, str) else "unknown",
        error=error,
        trace_id=trace_id if isinstance(trace_id, str) else None,
    )


# =============================================================================
# Validation
# =============================================================================


def _normalize_nulls(data: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    """Drop keys whose value is null so null and absent compare equal."""
    return {k: v for k, v in data.items() if not (k in keys and v is None)}


def validate_request(raw: Any) -> RequestEnvelope:
    """Validate a deserialized request.

    Only the method *format* is checked here; whether the method exists is
    the registry's concern.

    Raises:
        ARCError: INVALID_REQUEST, INVALID_VERSION or INVALID_METHOD_FORMAT
    """
    if not isinstance(raw, dict):
        raise InvalidRequestError("Invalid request: Request must be a JSON object")

    missing = [name for name in REQUEST_FIELDS if name not in raw]
    if missing:
        raise InvalidRequestError(
            f"Invalid request: Missing required field '{missing[0]}'",
            {"missing": missing},
        )

    version = raw["version"]
    if version != PROTOCOL_VERSION:
        raise ARCError(
            f"Invalid ARC version: {version}",
            {"supportedVersion": PROTOCOL_VERSION},
            code=ErrorCode.INVALID_VERSION,
        )

    data = _normalize_nulls(raw, ("traceId",))
    try:
        request = RequestEnvelope.model_validate(data)
    except ValidationError as e:
        raise InvalidRequestError(
            "Invalid request: Malformed envelope",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    if not METHOD_PATTERN.match(request.method):
        raise ARCError(
            f"Invalid method name: {request.method}",
            {"expectedFormat": "<domain>.<verb>"},
            code=ErrorCode.INVALID_METHOD_FORMAT,
        )

    return request


def validate_response(raw: Any, expected_id: str | int | None) -> ResponseEnvelope:
    """Validate a deserialized response against the request it answers.

    Raises:
        ProtocolError: On any structural problem, id mismatch, or a
            violation of exactly-one-of(result, error)
    """
    if not isinstance(raw, dict):
        raise ProtocolError("Invalid response: Response must be a JSON object")

    missing = [name for name in RESPONSE_FIELDS if name not in raw]
    if missing:
        raise ProtocolError(
            f"Missing required field in response: {missing[0]}",
            {"missing": missing},
        )

    if raw["version"] != PROTOCOL_VERSION:
        raise ProtocolError(
            f"Unsupported ARC version: {raw['version']}",
            {"supportedVersion": PROTOCOL_VERSION},
            code=ErrorCode.INVALID_VERSION,
        )

    if raw["id"] != expected_id or isinstance(raw["id"], bool):
        raise ProtocolError(
            "Response ID does not match request ID",
            {"expected": expected_id, "received": raw["id"]},
            code=ErrorCode.RESPONSE_ID_MISMATCH,
        )

    data = _normalize_nulls(raw, ("result", "error", "traceId"))
    has_result = "result" in data
    has_error = "error" in data
    if has_result == has_error:
        raise ProtocolError(
            "Response must contain exactly one of result or error",
            {"hasResult": has_result, "hasError": has_error},
        )

    try:
        return ResponseEnvelope.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(
            "Invalid response: Malformed envelope",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e

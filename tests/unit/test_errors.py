"""Unit tests for the error taxonomy."""

import pytest

from arc_runtime.protocol.errors import (
    NAMESPACE_BASES,
    ARCError,
    AuthenticationRequiredError,
    ChatAlreadyClosedError,
    ErrorCode,
    ErrorNamespace,
    ErrorObject,
    InternalError,
    RoutingError,
    TaskAlreadyCompletedError,
    compose_code,
    is_retryable,
    make_error,
    namespace_of,
)


class TestCodeComposition:
    """Test namespace-local to composite code mapping."""

    @pytest.mark.parametrize(
        "namespace,local,expected",
        [
            (ErrorNamespace.TRANSPORT, 700, ErrorCode.PARSE_ERROR),
            (ErrorNamespace.TRANSPORT, 601, ErrorCode.METHOD_NOT_FOUND),
            (ErrorNamespace.ROUTING, 1, ErrorCode.AGENT_NOT_FOUND),
            (ErrorNamespace.TASK, 2, ErrorCode.TASK_ALREADY_COMPLETED),
            (ErrorNamespace.CHAT, 6, ErrorCode.CHAT_BUFFER_OVERFLOW),
            (ErrorNamespace.SECURITY, 3, ErrorCode.INSUFFICIENT_CAPABILITY),
            (ErrorNamespace.PROTOCOL, 1, ErrorCode.INVALID_VERSION),
        ],
    )
    def test_known_codes(self, namespace, local, expected):
        """Known codes sit at base - local in their namespace."""
        assert compose_code(namespace, local) == expected

    @pytest.mark.parametrize("local", [-1, 1000, 5000])
    def test_local_code_outside_block(self, local):
        """Local codes must fit inside the namespace block."""
        with pytest.raises(ValueError):
            compose_code(ErrorNamespace.TASK, local)

    def test_namespaces_are_disjoint(self):
        """No two namespace blocks overlap."""
        blocks = sorted((base - 999, base) for base in NAMESPACE_BASES.values())
        for (_, high), (low, _) in zip(blocks, blocks[1:]):
            assert high < low

    def test_every_known_code_has_a_namespace(self):
        """All ErrorCode members fall inside a namespace block."""
        for code in ErrorCode:
            assert namespace_of(code) is not None, code

    def test_namespace_of(self):
        """Composite codes map back to their namespace."""
        assert namespace_of(-32700) == ErrorNamespace.TRANSPORT
        assert namespace_of(-41001) == ErrorNamespace.ROUTING
        assert namespace_of(-44003) == ErrorNamespace.SECURITY
        assert namespace_of(-1) is None

    def test_make_error(self):
        """make_error builds an immutable ErrorObject."""
        error = make_error(ErrorNamespace.CHAT, 1, "Chat not found", {"chatId": "c1"})

        assert error == ErrorObject(code=-43001, message="Chat not found", details={"chatId": "c1"})
        with pytest.raises(Exception):
            error.code = 0  # type: ignore[misc]

    def test_wire_form_omits_missing_details(self):
        """details is only on the wire when set."""
        assert ErrorObject(code=-32603, message="x").to_wire() == {"code": -32603, "message": "x"}


class TestRetryable:
    """Test the retry classifier."""

    @pytest.mark.parametrize(
        "code",
        [
            ErrorCode.TRANSPORT_ERROR,
            ErrorCode.SERVICE_UNAVAILABLE,
            ErrorCode.AGENT_UNAVAILABLE,
            ErrorCode.AGENT_TIMEOUT,
        ],
    )
    def test_retryable(self, code):
        """Transport and availability failures may be retried."""
        assert is_retryable(code)

    @pytest.mark.parametrize(
        "code",
        [
            ErrorCode.PARSE_ERROR,
            ErrorCode.METHOD_NOT_FOUND,
            ErrorCode.INTERNAL_ERROR,
            ErrorCode.AGENT_NOT_FOUND,
            ErrorCode.TASK_ALREADY_COMPLETED,
            ErrorCode.CHAT_ALREADY_CLOSED,
            ErrorCode.INSUFFICIENT_CAPABILITY,
            ErrorCode.INVALID_VERSION,
        ],
    )
    def test_not_retryable(self, code):
        """Structural, security and business errors are final."""
        assert not is_retryable(code)


class TestARCError:
    """Test the exception hierarchy."""

    def test_subclass_codes_and_defaults(self):
        """Each subclass carries its code and a default message."""
        error = TaskAlreadyCompletedError()

        assert error.code == ErrorCode.TASK_ALREADY_COMPLETED
        assert error.message == "Task already completed"
        assert not error.retryable

    def test_security_subclass(self):
        """Authentication errors are security errors."""
        assert AuthenticationRequiredError().code == -44001

    def test_to_error_object(self):
        """Exceptions convert to wire errors unchanged."""
        error = ChatAlreadyClosedError("Chat c1 is closed", {"chatId": "c1"})

        assert error.to_error_object().to_wire() == {
            "code": -43002,
            "message": "Chat c1 is closed",
            "details": {"chatId": "c1"},
        }

    def test_code_override(self):
        """An explicit code wins over the class code."""
        error = ARCError("custom", code=ErrorCode.INVALID_METHOD_FORMAT)

        assert error.code == -45002

    def test_from_error_object(self):
        """Wire errors convert back to exceptions."""
        error = ARCError.from_error_object(ErrorObject(code=-41002, message="down"))

        assert error.code == -41002
        assert error.retryable
        assert str(error) == "down"

    def test_internal_and_routing_defaults(self):
        """Generic messages for internal and routing errors."""
        assert InternalError().message == "Internal server error"
        assert RoutingError().code == ErrorCode.AGENT_NOT_FOUND

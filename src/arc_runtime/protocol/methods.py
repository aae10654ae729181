"""Method catalogue for the ARC protocol.

Method names are namespaced as `<domain>.<verb>`. The engine dispatches any
well-formed name; this catalogue lists the ones the protocol defines and the
capabilities they require by default.
"""

from __future__ import annotations

from enum import Enum


class MethodName(str, Enum):
    """All methods defined by the protocol."""

    # Task lifecycle
    TASK_CREATE = "task.create"
    TASK_SEND = "task.send"
    TASK_INFO = "task.info"
    TASK_CANCEL = "task.cancel"
    TASK_SUBSCRIBE = "task.subscribe"

    # Push-style lifecycle notification (caller does not act on the reply)
    TASK_NOTIFICATION = "task.notification"

    # Chat lifecycle
    CHAT_START = "chat.start"
    CHAT_MESSAGE = "chat.message"
    CHAT_END = "chat.end"


class Capability(str, Enum):
    """Capability (OAuth2 scope) strings used by the default method map."""

    TASK_CONTROLLER = "arc.task.controller"
    TASK_NOTIFY = "arc.task.notify"
    CHAT_CONTROLLER = "arc.chat.controller"
    AGENT_CALLER = "arc.agent.caller"
    AGENT_RECEIVER = "arc.agent.receiver"


_TASK_CALLER = [Capability.TASK_CONTROLLER.value, Capability.AGENT_CALLER.value]
_CHAT_CALLER = [Capability.CHAT_CONTROLLER.value, Capability.AGENT_CALLER.value]

DEFAULT_REQUIRED_CAPABILITIES: dict[str, list[str]] = {
    MethodName.TASK_CREATE.value: _TASK_CALLER,
    MethodName.TASK_SEND.value: _TASK_CALLER,
    MethodName.TASK_INFO.value: _TASK_CALLER,
    MethodName.TASK_CANCEL.value: _TASK_CALLER,
    MethodName.TASK_SUBSCRIBE.value: _TASK_CALLER,
    MethodName.TASK_NOTIFICATION.value: [
        Capability.TASK_NOTIFY.value,
        Capability.AGENT_RECEIVER.value,
    ],
    MethodName.CHAT_START.value: _CHAT_CALLER,
    MethodName.CHAT_MESSAGE.value: _CHAT_CALLER,
    MethodName.CHAT_END.value: _CHAT_CALLER,
}

# Methods whose replies may be streamed when the caller asks for it
STREAMABLE_METHODS = frozenset({MethodName.CHAT_START.value, MethodName.CHAT_MESSAGE.value})


def method_domain(method: str) -> str:
    """Return the domain part of a method name ("task" for "task.create")."""
    return method.split(".", 1)[0]


def default_capability_map() -> dict[str, list[str]]:
    """Fresh copy of the default method -> capabilities map."""
    return {name: list(caps) for name, caps in DEFAULT_REQUIRED_CAPABILITIES.items()}

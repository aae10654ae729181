"""Payload types for the protocol's task and chat methods.

The engine passes params and results through untouched; these models exist
for handlers and clients that want typed payloads. Field names follow the
camelCase wire format through aliases, so both spellings are accepted on
input and `to_wire()` always emits camelCase.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .methods import MethodName


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class PartType(str, Enum):
    TEXT_PART = "TextPart"
    DATA_PART = "DataPart"
    FILE_PART = "FilePart"
    IMAGE_PART = "ImagePart"
    AUDIO_PART = "AudioPart"


class Encoding(str, Enum):
    BASE64 = "base64"
    UTF8 = "utf8"
    BINARY = "binary"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    SUBMITTED = "SUBMITTED"
    WORKING = "WORKING"
    INPUT_REQUIRED = "INPUT_REQUIRED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_final(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELED)


class ChatStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"


class Priority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TaskEventType(str, Enum):
    """Events carried by task.notification."""

    TASK_CREATED = "TASK_CREATED"
    TASK_STARTED = "TASK_STARTED"
    TASK_PAUSED = "TASK_PAUSED"
    TASK_RESUMED = "TASK_RESUMED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_FAILED = "TASK_FAILED"
    TASK_CANCELED = "TASK_CANCELED"
    NEW_MESSAGE = "NEW_MESSAGE"
    NEW_ARTIFACT = "NEW_ARTIFACT"
    STATUS_CHANGE = "STATUS_CHANGE"


class ResultType(str, Enum):
    TASK = "task"
    CHAT = "chat"
    SUBSCRIPTION = "subscription"
    SUCCESS = "success"


class WireModel(BaseModel):
    """Base for payload models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# Base objects
# =============================================================================


class Part(WireModel):
    """A piece of message content."""

    type: PartType
    content: Any = None
    mime_type: str | None = None
    filename: str | None = None
    size: int | None = None
    encoding: Encoding | None = None

    @classmethod
    def text(cls, content: str) -> Part:
        return cls(type=PartType.TEXT_PART, content=content)


class Message(WireModel):
    role: Role
    parts: list[Part]
    timestamp: str | None = None
    agent_id: str | None = None

    @classmethod
    def user_text(cls, text: str) -> Message:
        return cls(role=Role.USER, parts=[Part.text(text)])

    @classmethod
    def agent_text(cls, text: str, agent_id: str | None = None) -> Message:
        return cls(role=Role.AGENT, parts=[Part.text(text)], agent_id=agent_id)


class Artifact(WireModel):
    artifact_id: str
    name: str
    description: str | None = None
    parts: list[Part] = Field(default_factory=list)
    created_at: str | None = None
    created_by: str | None = None
    version: str | None = None
    metadata: dict[str, Any] | None = None


class TaskObject(WireModel):
    task_id: str
    status: TaskStatus
    created_at: str = Field(default_factory=utc_now)
    updated_at: str | None = None
    assigned_agent: str | None = None
    messages: list[Message] | None = None
    artifacts: list[Artifact] | None = None
    metadata: dict[str, Any] | None = None


class ChatObject(WireModel):
    chat_id: str
    status: ChatStatus
    message: Message | None = None
    participants: list[str] | None = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str | None = None
    closed_at: str | None = None
    reason: str | None = None
    metadata: dict[str, Any] | None = None


class SubscriptionObject(WireModel):
    subscription_id: str
    task_id: str
    callback_url: str
    events: list[TaskEventType] = Field(default_factory=list)
    created_at: str | None = None
    active: bool | None = None


# =============================================================================
# Method parameters
# =============================================================================


class TaskCreateParams(WireModel):
    initial_message: Message
    priority: Priority | None = None
    metadata: dict[str, Any] | None = None


class TaskSendParams(WireModel):
    task_id: str
    message: Message


class TaskInfoParams(WireModel):
    task_id: str
    include_messages: bool | None = None
    include_artifacts: bool | None = None


class TaskCancelParams(WireModel):
    task_id: str
    reason: str | None = None


class TaskSubscribeParams(WireModel):
    task_id: str
    callback_url: str
    events: list[TaskEventType] | None = None


class TaskNotificationParams(WireModel):
    task_id: str
    event: TaskEventType
    timestamp: str = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)


class ChatStartParams(WireModel):
    initial_message: Message
    chat_id: str | None = None
    stream: bool | None = None
    metadata: dict[str, Any] | None = None


class ChatMessageParams(WireModel):
    chat_id: str
    message: Message
    stream: bool | None = None


class ChatEndParams(WireModel):
    chat_id: str
    reason: str | None = None


# =============================================================================
# Results
# =============================================================================


class TaskResult(WireModel):
    type: Literal["task"] = "task"
    task: TaskObject


class ChatResult(WireModel):
    type: Literal["chat"] = "chat"
    chat: ChatObject


class SubscriptionResult(WireModel):
    type: Literal["subscription"] = "subscription"
    subscription: SubscriptionObject


class SuccessResult(WireModel):
    success: bool = True
    message: str | None = None


# Methods whose bare dict result is a domain object: result type and its id key
_RESULT_WRAPPERS: dict[str, tuple[ResultType, str]] = {
    MethodName.TASK_CREATE.value: (ResultType.TASK, "taskId"),
    MethodName.TASK_SEND.value: (ResultType.TASK, "taskId"),
    MethodName.TASK_INFO.value: (ResultType.TASK, "taskId"),
    MethodName.TASK_CANCEL.value: (ResultType.TASK, "taskId"),
    MethodName.TASK_SUBSCRIBE.value: (ResultType.SUBSCRIPTION, "subscriptionId"),
    MethodName.CHAT_START.value: (ResultType.CHAT, "chatId"),
    MethodName.CHAT_MESSAGE.value: (ResultType.CHAT, "chatId"),
    MethodName.CHAT_END.value: (ResultType.CHAT, "chatId"),
}


def shape_result(value: Any, method: str | None = None) -> Any:
    """Normalize a handler's return value into a wire result.

    - pydantic models are dumped with camelCase aliases
    - TaskObject, ChatObject and SubscriptionObject models are wrapped as
      {"type": "task", "task": {...}} (likewise for chat and subscription)
    - a bare dict is wrapped the same way only when the method returns that
      kind of object and the dict carries its id (taskId for task.*)
    - None becomes {"success": true}
    - anything else passes through unchanged
    """
    if value is None:
        return SuccessResult().to_wire()

    if isinstance(value, TaskObject):
        return TaskResult(task=value).to_wire()
    if isinstance(value, ChatObject):
        return ChatResult(chat=value).to_wire()
    if isinstance(value, SubscriptionObject):
        return SubscriptionResult(subscription=value).to_wire()
    if isinstance(value, WireModel):
        return value.to_wire()
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True, mode="json")

    wrapper = _RESULT_WRAPPERS.get(method) if method is not None else None
    if wrapper is not None and isinstance(value, dict) and "type" not in value:
        result_type, id_key = wrapper
        if id_key in value:
            return {"type": result_type.value, result_type.value: value}

    return value

"""Unit tests for payload types and result shaping."""

from arc_runtime.protocol.types import (
    ChatObject,
    ChatStatus,
    Message,
    Part,
    TaskCreateParams,
    TaskObject,
    TaskStatus,
    shape_result,
)


class TestShapeResult:
    """Test normalizing handler return values into wire results."""

    def test_none_is_success(self):
        assert shape_result(None) == {"success": True}

    def test_bare_task_dict_is_wrapped(self):
        """A task method's dict carrying a taskId becomes a task result."""
        task = {"taskId": "t1", "status": "SUBMITTED"}

        assert shape_result(task, "task.create") == {"type": "task", "task": task}
        assert shape_result(task, "task.info") == {"type": "task", "task": task}

    def test_bare_chat_dict_is_wrapped(self):
        chat = {"chatId": "c1", "status": "ACTIVE"}

        assert shape_result(chat, "chat.start") == {"type": "chat", "chat": chat}

    def test_bare_subscription_dict_is_wrapped(self):
        subscription = {"subscriptionId": "s1", "taskId": "t1"}

        assert shape_result(subscription, "task.subscribe") == {
            "type": "subscription",
            "subscription": subscription,
        }

    def test_other_methods_pass_through(self):
        """Only methods returning domain objects get their dicts wrapped."""
        report = {"taskId": "t1", "rows": 3}

        assert shape_result(report, "report.get") == report
        assert shape_result(report) == report
        assert shape_result({"chatId": "c1"}, "task.info") == {"chatId": "c1"}

    def test_already_shaped_passes_through(self):
        """Results with a type key are left alone."""
        result = {"type": "task", "task": {"taskId": "t1"}}

        assert shape_result(result) == result

    def test_plain_values_pass_through(self):
        assert shape_result({"answer": 42}) == {"answer": 42}
        assert shape_result("text") == "text"
        assert shape_result([1, 2]) == [1, 2]

    def test_task_model_is_wrapped_in_camel_case(self):
        task = TaskObject(task_id="t1", status=TaskStatus.WORKING, created_at="2024-01-01T00:00:00Z")

        assert shape_result(task) == {
            "type": "task",
            "task": {"taskId": "t1", "status": "WORKING", "createdAt": "2024-01-01T00:00:00Z"},
        }

    def test_chat_model_is_wrapped(self):
        chat = ChatObject(chat_id="c1", status=ChatStatus.ACTIVE)

        shaped = shape_result(chat)

        assert shaped["type"] == "chat"
        assert shaped["chat"]["chatId"] == "c1"
        assert shaped["chat"]["status"] == "ACTIVE"


class TestWireModels:
    """Test camelCase wire mapping."""

    def test_user_text_message(self):
        assert Message.user_text("hi").to_wire() == {
            "role": "user",
            "parts": [{"type": "TextPart", "content": "hi"}],
        }

    def test_accepts_camel_case_input(self):
        """Models parse the wire spelling of field names."""
        params = TaskCreateParams.model_validate(
            {
                "initialMessage": {"role": "user", "parts": [{"type": "TextPart", "content": "x"}]},
                "priority": "HIGH",
            }
        )

        assert params.initial_message.parts[0] == Part.text("x")
        assert params.to_wire()["priority"] == "HIGH"

    def test_task_status_finality(self):
        assert TaskStatus.COMPLETED.is_final
        assert TaskStatus.CANCELED.is_final
        assert not TaskStatus.WORKING.is_final

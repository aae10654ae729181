"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from arc_runtime.config import EngineConfig
from arc_runtime.protocol import ARCEngine, RequestContext
from arc_runtime.protocol.errors import TaskNotFoundError

AGENT_ID = "agent-1"


def make_request(
    method: str = "task.create",
    target: str = AGENT_ID,
    params: dict[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Raw wire request as a transport would hand it to the engine."""
    raw: dict[str, Any] = {
        "version": "1.0",
        "id": "req-1",
        "method": method,
        "sender": "client-app-01",
        "target": target,
        "params": params if params is not None else {},
    }
    raw.update(extra)
    return raw


# =============================================================================
# Handler stubs (real behavior, minimal implementation)
# =============================================================================


async def create_task(params: dict[str, Any], context: RequestContext) -> dict[str, Any]:
    return {"taskId": "t1", "status": "SUBMITTED"}


def task_info(params: dict[str, Any], context: RequestContext) -> dict[str, Any]:
    if params.get("taskId") != "t1":
        raise TaskNotFoundError(f"Task not found: {params.get('taskId')}", {"taskId": params.get("taskId")})
    return {"taskId": "t1", "status": "WORKING"}


async def chat_start(params: dict[str, Any], context: RequestContext) -> AsyncIterator[str]:
    for fragment in ["Hel", "lo"]:
        yield fragment


async def chat_end(params: dict[str, Any], context: RequestContext) -> None:
    await asyncio.sleep(0)


def echo_context(params: dict[str, Any], context: RequestContext) -> dict[str, Any]:
    return {
        "requestId": context.request_id,
        "sender": context.sender,
        "traceId": context.trace_id,
        "subject": context.subject,
    }


def register_stub_handlers(engine: ARCEngine) -> ARCEngine:
    engine.register("task.create", create_task)
    engine.register("task.info", task_info)
    engine.register("chat.start", chat_start)
    engine.register("chat.end", chat_end)
    engine.register("debug.context", echo_context)
    return engine


@pytest.fixture
def engine() -> ARCEngine:
    """Engine for agent-1 with stub handlers and authorization off."""
    return register_stub_handlers(ARCEngine(EngineConfig(agent_id=AGENT_ID)))


def grant_validator(tokens: dict[str, list[str]]):
    """Credential validator backed by a token -> capabilities table."""

    def validate(credential: str) -> dict[str, Any]:
        if credential not in tokens:
            return {"authenticated": False, "grantedCapabilities": []}
        return {
            "authenticated": True,
            "grantedCapabilities": tokens[credential],
            "subject": f"user-{credential}",
        }

    return validate

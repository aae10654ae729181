"""Engine and client configuration.

Both are plain dataclasses built once at startup and passed explicitly to
the objects that use them. EngineConfig.from_env() covers deployments that
configure through environment variables:

- ARC_AGENT_ID: local agent identity (required for from_env)
- ARC_AGENT_NAME: display name
- ARC_AUTH_ENABLED: enforce capability requirements ("1", "true", "yes")
- ARC_DEBUG: include exception detail in internal errors
- ARC_CORS_ENABLED: add CORS middleware to the HTTP app (default on)
- ARC_LOG_REQUESTS: log each request at INFO level
- ARC_CAPABILITIES_FILE: YAML capability map replacing the default
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .protocol.methods import default_capability_map

_TRUTHY = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.lower() in _TRUTHY


def load_capability_map(path: str | Path) -> dict[str, list[str]]:
    """Load a method -> capabilities map from YAML.

    Accepts either a top-level mapping or one nested under `methods`:

        methods:
          task.create: [arc.task.controller, arc.agent.caller]
          chat.start: arc.chat.controller

    A single string value is treated as a one-element list.

    Raises:
        ValueError: If the file does not contain a mapping of method names
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if isinstance(data, dict) and isinstance(data.get("methods"), dict):
        data = data["methods"]
    if not isinstance(data, dict):
        raise ValueError(f"Capability map in {path} must be a mapping of method names")

    capability_map: dict[str, list[str]] = {}
    for method, caps in data.items():
        if caps is None:
            capability_map[str(method)] = []
        elif isinstance(caps, str):
            capability_map[str(method)] = [caps]
        elif isinstance(caps, list):
            capability_map[str(method)] = [str(c) for c in caps]
        else:
            raise ValueError(f"Capabilities for {method} must be a string or list")
    return capability_map


@dataclass
class EngineConfig:
    """Configuration for an ARCEngine."""

    agent_id: str
    name: str | None = None
    version: str = "1.0.0"
    description: str | None = None

    # Capability enforcement is off unless switched on explicitly
    enable_auth: bool = False
    required_capabilities: dict[str, list[str]] = field(default_factory=default_capability_map)

    # Include exception type and message in INTERNAL_ERROR details
    debug: bool = False

    # HTTP adapter
    endpoint_path: str = "/arc"
    enable_cors: bool = True
    # Exact origins, plus a regex matched against the full Origin header
    cors_origins: list[str] = field(default_factory=list)
    cors_origin_regex: str | None = r"https?://(localhost|127\.0\.0\.1)(:\d+)?"

    # Log every request at INFO (method, id, sender)
    log_requests: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> EngineConfig:
        """Build a config from ARC_* environment variables.

        Keyword overrides win over the environment.

        Raises:
            ValueError: If no agent id is configured
        """
        values: dict[str, Any] = {
            "agent_id": os.environ.get("ARC_AGENT_ID", ""),
            "name": os.environ.get("ARC_AGENT_NAME") or None,
            "enable_auth": _env_flag("ARC_AUTH_ENABLED", False),
            "debug": _env_flag("ARC_DEBUG", False),
            "enable_cors": _env_flag("ARC_CORS_ENABLED", True),
            "log_requests": _env_flag("ARC_LOG_REQUESTS", False),
        }
        capabilities_file = os.environ.get("ARC_CAPABILITIES_FILE")
        if capabilities_file:
            values["required_capabilities"] = load_capability_map(capabilities_file)

        values.update({k: v for k, v in overrides.items() if v is not None})
        if not values["agent_id"]:
            raise ValueError("Agent id is required (set ARC_AGENT_ID)")
        return cls(**values)


@dataclass
class ClientConfig:
    """Configuration for the HTTP client transport."""

    endpoint: str = "http://localhost:8000/arc"
    sender: str = "arc-client"
    token: str | None = None
    timeout: float = 60.0
    verify_ssl: bool = True
    headers: dict[str, str] = field(default_factory=dict)

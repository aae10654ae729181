"""Method registry and capability authorizer.

Maps method names to handlers and the capability set each method requires.
Registration happens while the embedding application sets up, before the
engine starts serving; the registry takes no lock.

Usage:
    registry = MethodRegistry(enable_auth=True)

    @registry.method("task.create", required_capabilities=["arc.task.controller"])
    async def create_task(params, context):
        ...

    handler = registry.resolve("task.create")
    outcome = registry.authorize("task.create", decision)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import MethodNotFoundError

logger = logging.getLogger(__name__)

# Handlers are called as handler(params, context) and may be sync or async
Handler = Callable[..., Any]

_MARKER = "__arc_method__"


@dataclass(frozen=True)
class AuthDecision:
    """Result of validating a bearer credential. Consumed once per request."""

    authenticated: bool
    granted_capabilities: frozenset[str] = field(default_factory=frozenset)
    subject: str | None = None

    @classmethod
    def from_value(cls, value: AuthDecision | Mapping[str, Any] | None) -> AuthDecision:
        """Accept either a decision or the validator's plain mapping.

        Mappings may use either `grantedCapabilities` or
        `granted_capabilities` (a space-separated scope string is split).
        """
        if isinstance(value, AuthDecision):
            return value
        if value is None:
            return cls(authenticated=False)

        granted = value.get("grantedCapabilities", value.get("granted_capabilities", ()))
        if isinstance(granted, str):
            granted = granted.split()
        return cls(
            authenticated=bool(value.get("authenticated", False)),
            granted_capabilities=frozenset(granted or ()),
            subject=value.get("subject"),
        )


@dataclass(frozen=True)
class AuthorizationOutcome:
    allowed: bool
    required: tuple[str, ...] = ()
    granted: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()


@dataclass(frozen=True)
class Registration:
    name: str
    handler: Handler
    required_capabilities: frozenset[str] | None = None


def method_handler(
    name: str,
    required_capabilities: Iterable[str] | None = None,
) -> Callable[[Handler], Handler]:
    """Mark a function as the handler for `name`.

    Marked functions are picked up by MethodRegistry.register_from().
    """

    def decorator(func: Handler) -> Handler:
        caps = None if required_capabilities is None else frozenset(required_capabilities)
        setattr(func, _MARKER, (name, caps))
        return func

    return decorator


class MethodRegistry:
    """Method name -> handler table with per-method capability requirements.

    Args:
        enable_auth: Whether authorize() enforces capabilities. Keyword-only
            with no default.
        capability_map: Method -> capabilities applied to methods registered
            without an explicit requirement.
    """

    def __init__(
        self,
        *,
        enable_auth: bool,
        capability_map: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self.enable_auth = enable_auth
        self._capability_map: dict[str, frozenset[str]] = {
            name: frozenset(caps) for name, caps in (capability_map or {}).items()
        }
        self._methods: dict[str, Registration] = {}

    # =========================================================================
    # Registration
    # =========================================================================

    def register(
        self,
        name: str,
        handler: Handler,
        required_capabilities: Iterable[str] | None = None,
    ) -> None:
        """Bind `handler` to `name`. A later registration for the same name wins."""
        caps = None if required_capabilities is None else frozenset(required_capabilities)
        if name in self._methods:
            logger.debug(f"Replacing handler for method {name}")
        self._methods[name] = Registration(name, handler, caps)

    def method(
        self,
        name: str,
        required_capabilities: Iterable[str] | None = None,
    ) -> Callable[[Handler], Handler]:
        """Decorator form of register()."""

        def decorator(func: Handler) -> Handler:
            self.register(name, func, required_capabilities)
            return func

        return decorator

    def register_from(self, source: Any) -> list[str]:
        """Register every @method_handler function found on a module or object.

        Returns:
            Names of the registered methods
        """
        registered = []
        for _, member in inspect.getmembers(source, callable):
            marker = getattr(member, _MARKER, None)
            if marker is None:
                continue
            name, caps = marker
            self.register(name, member, caps)
            registered.append(name)
        return registered

    def unregister(self, name: str) -> bool:
        return self._methods.pop(name, None) is not None

    def set_required_capabilities(self, name: str, capabilities: Iterable[str]) -> None:
        """Set the requirement for `name`, registered or not."""
        caps = frozenset(capabilities)
        registration = self._methods.get(name)
        if registration is None:
            self._capability_map[name] = caps
        else:
            self._methods[name] = Registration(name, registration.handler, caps)

    # =========================================================================
    # Lookup
    # =========================================================================

    def resolve(self, name: str) -> Handler:
        """Return the handler for `name`.

        Raises:
            MethodNotFoundError: With the registered names in details
        """
        registration = self._methods.get(name)
        if registration is None:
            raise MethodNotFoundError(
                f"Method not found: {name}",
                {"method": name, "supportedMethods": self.methods()},
            )
        return registration.handler

    def has(self, name: str) -> bool:
        return name in self._methods

    def methods(self) -> list[str]:
        """Registered method names, sorted."""
        return sorted(self._methods)

    def required_capabilities(self, name: str) -> frozenset[str]:
        registration = self._methods.get(name)
        if registration is not None and registration.required_capabilities is not None:
            return registration.required_capabilities
        return self._capability_map.get(name, frozenset())

    # =========================================================================
    # Authorization
    # =========================================================================

    def authorize(
        self,
        name: str,
        decision: AuthDecision | Mapping[str, Any] | None,
    ) -> AuthorizationOutcome:
        """Check the decision's granted set covers every required capability.

        Always allowed when authorization is disabled or the method requires
        nothing. An unauthenticated decision grants nothing.
        """
        required = self.required_capabilities(name)
        if not self.enable_auth or not required:
            return AuthorizationOutcome(allowed=True, required=tuple(sorted(required)))

        decision = AuthDecision.from_value(decision)
        granted = decision.granted_capabilities if decision.authenticated else frozenset()
        missing = required - granted
        return AuthorizationOutcome(
            allowed=not missing,
            required=tuple(sorted(required)),
            granted=tuple(sorted(granted)),
            missing=tuple(sorted(missing)),
        )

    def __contains__(self, name: object) -> bool:
        return name in self._methods

    def __len__(self) -> int:
        return len(self._methods)

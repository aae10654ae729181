"""ARC Runtime CLI.

Usage:
    arc-runtime serve --agent-id agent-1                      # Serve on :8000
    arc-runtime serve --agent-id agent-1 --handlers myapp.arc # Load handlers
    arc-runtime serve --agent-id agent-1 --auth --capabilities caps.yaml

    arc-runtime call task.create --target agent-1 --params '{"initialMessage": ...}'
    arc-runtime call chat.start --target agent-1 --params '...' --stream

    arc-runtime health --url http://localhost:8000
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import json
import logging
import sys
from typing import Any

import click
import httpx

from .config import ClientConfig, EngineConfig, load_capability_map
from .protocol.dispatcher import ARCEngine
from .protocol.errors import ARCError
from .sdk.client import ARCClient
from .sdk.correlation import CorrelationError
from .sdk.transport import HTTPClientTransport

DEFAULT_PORT = 8000


def _configure_logging(debug: bool) -> None:
    # Logs go to stderr; stdout carries command output
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )


@click.group()
def main() -> None:
    """ARC Runtime - agent-to-agent RPC engine and client."""


# =============================================================================
# serve
# =============================================================================


@main.command()
@click.option("--agent-id", envvar="ARC_AGENT_ID", required=True, help="Local agent identity")
@click.option("--name", envvar="ARC_AGENT_NAME", default=None, help="Display name for agent-info")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=DEFAULT_PORT, help="Port to bind to")
@click.option("--auth", "enable_auth", is_flag=True, help="Enforce method capability requirements")
@click.option(
    "--capabilities",
    "capabilities_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file mapping methods to required capabilities",
)
@click.option(
    "--handlers",
    "handler_specs",
    multiple=True,
    help="Module with handlers, as module or module:setup_function (repeatable)",
)
@click.option("--log-requests", is_flag=True, help="Log every ARC request at INFO level")
@click.option("--debug", is_flag=True, help="Verbose logging and exception detail in errors")
def serve(
    agent_id: str,
    name: str | None,
    host: str,
    port: int,
    enable_auth: bool,
    capabilities_path: str | None,
    handler_specs: tuple[str, ...],
    log_requests: bool,
    debug: bool,
) -> None:
    """Serve an agent over HTTP."""
    import uvicorn

    from .app import create_app

    _configure_logging(debug)

    config = EngineConfig(
        agent_id=agent_id,
        name=name,
        enable_auth=enable_auth,
        debug=debug,
        log_requests=log_requests,
    )
    if capabilities_path:
        config.required_capabilities = load_capability_map(capabilities_path)

    engine = ARCEngine(config)
    for spec in handler_specs:
        _load_handlers(engine, spec)

    click.echo(f"Starting ARC agent {agent_id} on http://{host}:{port}{config.endpoint_path}", err=True)
    methods = engine.registry.methods()
    click.echo(f"  Methods: {', '.join(methods) if methods else '(none registered)'}", err=True)
    if enable_auth:
        click.echo("  Capability enforcement: on", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(create_app(engine), host=host, port=port, log_level="debug" if debug else "info")


def _load_handlers(engine: ARCEngine, spec: str) -> None:
    """Import a handler module and register its handlers.

    `module:function` calls function(engine). A bare module registers its
    @method_handler functions and calls its `setup(engine)` if present.
    """
    module_name, _, attr = spec.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        click.echo(f"Failed to import module {module_name}: {e}", err=True)
        sys.exit(1)

    if attr:
        setup = getattr(module, attr, None)
        if setup is None:
            click.echo(f"Module {module_name} has no attribute {attr}", err=True)
            sys.exit(1)
    else:
        registered = engine.registry.register_from(module)
        if registered:
            click.echo(f"  Registered from {module_name}: {', '.join(registered)}", err=True)
        setup = getattr(module, "setup", None)

    if setup is not None:
        result = setup(engine)
        if inspect.isawaitable(result):
            asyncio.run(result)


# =============================================================================
# call
# =============================================================================


@main.command()
@click.argument("method")
@click.option("--target", required=True, help="Target agent id")
@click.option("--sender", default="arc-cli", help="Sender agent id")
@click.option("--params", "params_json", default="{}", help="Method params as JSON")
@click.option("--trace-id", default=None, help="Trace id threaded through the call")
@click.option("--token", envvar="ARC_TOKEN", default=None, help="Bearer token")
@click.option(
    "--endpoint",
    default=f"http://localhost:{DEFAULT_PORT}/arc",
    help="ARC endpoint URL",
)
@click.option("--timeout", default=60.0, help="Seconds to wait for the reply")
@click.option("--stream", "use_stream", is_flag=True, help="Print streamed frames as they arrive")
def call(
    method: str,
    target: str,
    sender: str,
    params_json: str,
    trace_id: str | None,
    token: str | None,
    endpoint: str,
    timeout: float,
    use_stream: bool,
) -> None:
    """Send one request to an agent and print the reply."""
    try:
        params = json.loads(params_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--params") from e
    if not isinstance(params, dict):
        raise click.BadParameter("Params must be a JSON object", param_hint="--params")

    config = ClientConfig(endpoint=endpoint, sender=sender, token=token, timeout=timeout)

    async def run() -> int:
        async with ARCClient(HTTPClientTransport(config), sender=sender, timeout=timeout) as client:
            try:
                if use_stream:
                    reader = await client.stream(method, params, target=target, trace_id=trace_id)
                    async for frame in reader:
                        click.echo(json.dumps(frame.to_wire(), ensure_ascii=False))
                    return 1 if reader.terminal and reader.terminal.error else 0

                result = await client.call(method, params, target=target, trace_id=trace_id)
                _print_json(result)
                return 0
            except ARCError as e:
                _print_json(e.to_error_object().to_wire(), err=True)
                return 1
            except CorrelationError as e:
                click.echo(f"Call failed: {e}", err=True)
                return 2

    sys.exit(asyncio.run(run()))


def _print_json(data: Any, err: bool = False) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False), err=err)


# =============================================================================
# health
# =============================================================================


@main.command()
@click.option("--url", default=f"http://localhost:{DEFAULT_PORT}", help="Server base URL")
def health(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url.rstrip('/')}/health")
                if response.status_code == 200:
                    data = response.json()
                    click.echo(f"Server is healthy: {data}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()

"""Health check and agent description endpoints."""

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..protocol import PROTOCOL_VERSION


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    engine = request.app.state.engine
    return JSONResponse(
        {"status": "ok", "agentId": engine.agent_id, "protocolVersion": PROTOCOL_VERSION}
    )


async def agent_info(request: Request) -> JSONResponse:
    """Describe the local agent and the methods it serves."""
    return JSONResponse(request.app.state.engine.agent_info())


health_routes = [
    Route("/health", health_check, methods=["GET"]),
    Route("/agent-info", agent_info, methods=["GET"]),
]

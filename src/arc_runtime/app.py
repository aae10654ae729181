"""ARC Server Application.

Creates the Starlette ASGI application around an ARCEngine.

Routes:
- POST /arc        - ARC requests (path from EngineConfig.endpoint_path)
- GET  /agent-info - Agent description and supported methods
- GET  /health     - Health check
"""

from __future__ import annotations

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from .protocol.dispatcher import ARCEngine
from .routes import arc_routes, health_routes


def create_app(engine: ARCEngine) -> Starlette:
    """Create the HTTP application serving `engine`.

    Args:
        engine: Fully configured engine (handlers already registered)

    Returns:
        Configured Starlette application
    """
    config = engine.config

    routes: list[Route] = []
    routes.extend(health_routes)
    routes.extend(arc_routes(config.endpoint_path))

    middleware = []
    if config.enable_cors:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=config.cors_origins,
                allow_origin_regex=config.cors_origin_regex,
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["*"],
            )
        )

    app = Starlette(routes=routes, middleware=middleware, debug=config.debug)
    app.state.engine = engine
    return app

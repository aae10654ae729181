"""HTTP API routes."""

from .arc import arc_routes
from .health import health_routes

__all__ = [
    "arc_routes",
    "health_routes",
]

"""ARC Runtime - agent-addressed RPC engine, HTTP adapter and client."""

from .config import ClientConfig, EngineConfig
from .protocol import ARCEngine, ARCError, RequestContext, StreamResult

__version__ = "0.1.0"

__all__ = [
    "ARCEngine",
    "ARCError",
    "ClientConfig",
    "EngineConfig",
    "RequestContext",
    "StreamResult",
]

"""ARC SDK - Client for calling ARC agents.

Transports:
- http: POST to a remote agent's ARC endpoint
- local: call an ARCEngine in the same process (tests, embedding)
"""

from .client import ARCClient, ChatAPI, TaskAPI, create_http_client
from .correlation import (
    ARCResponseError,
    CallCanceledError,
    CallState,
    CallTimeoutError,
    CorrelationError,
    CorrelationTracker,
    PendingCall,
    UndeliverableError,
)
from .transport import (
    ClientTransport,
    FrameSource,
    HTTPClientTransport,
    LocalClientTransport,
)

__all__ = [
    # Client
    "ARCClient",
    "TaskAPI",
    "ChatAPI",
    "create_http_client",
    # Correlation
    "CorrelationTracker",
    "PendingCall",
    "CallState",
    "ARCResponseError",
    "CorrelationError",
    "CallTimeoutError",
    "CallCanceledError",
    "UndeliverableError",
    # Transports
    "ClientTransport",
    "FrameSource",
    "HTTPClientTransport",
    "LocalClientTransport",
]

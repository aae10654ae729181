"""HTTP adapter for the ARC engine.

Thin layer that hands the request body and bearer credential to the
engine and writes its reply back:

- unary replies: JSON envelope, HTTP 200 (errors are in the envelope)
- streamed replies: SSE by default, NDJSON when the caller accepts
  application/x-ndjson

All protocol logic lives in ARCEngine. The engine is read from
`request.app.state.engine`.

Encoding:
- All JSON uses UTF-8 encoding (no BOM)
- SSE streams use `event: stream` / `event: done` with JSON data lines
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from ..protocol.dispatcher import ARCEngine
from ..protocol.streaming import (
    NDJSON_MEDIA_TYPE,
    SSE_MEDIA_TYPE,
    FrameStream,
    frames_to_ndjson,
    frames_to_sse,
)

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> ARCEngine:
    return request.app.state.engine


def bearer_credential(request: Request) -> str | None:
    """Extract the token from `Authorization: Bearer <token>`, if any."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def wants_ndjson(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return NDJSON_MEDIA_TYPE in accept and SSE_MEDIA_TYPE not in accept


def streaming_response(stream: FrameStream, format: str = "sse") -> Response:
    """Write a frame stream as SSE or NDJSON.

    If the caller disconnects, the body generator is closed, which closes
    the stream and cancels its producer.
    """
    encode = frames_to_ndjson if format == "ndjson" else frames_to_sse

    async def body() -> AsyncIterator[bytes]:
        try:
            async for chunk in encode(stream):
                yield chunk
        finally:
            if not stream.finished:
                logger.info(f"Stream {stream.correlation_key} closed before completion")
            await stream.aclose()

    if format == "ndjson":
        return StreamingResponse(
            body(),
            media_type=f"{NDJSON_MEDIA_TYPE}; charset=utf-8",
            headers={"X-Accel-Buffering": "no"},
        )
    return StreamingResponse(
        body(),
        media_type=f"{SSE_MEDIA_TYPE}; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


async def arc_endpoint(request: Request) -> Response:
    """POST /arc - process one ARC request."""
    engine = get_engine(request)
    body = await request.body()

    reply = await engine.handle_json(body, bearer_credential(request))

    if isinstance(reply, FrameStream):
        return streaming_response(reply, "ndjson" if wants_ndjson(request) else "sse")
    return JSONResponse(reply.to_wire())


def arc_routes(path: str = "/arc") -> list[Route]:
    return [Route(path, arc_endpoint, methods=["POST"])]

# imgproxy/transport/relay.py
"""
Streaming relay of an accepted upstream image to the client.

The body is copied chunk by chunk; the full payload is never held in
memory.  Only ``Content-Type``, ``Cache-Control`` and ``ETag`` cross from
upstream to the client.

``RelayedResponse`` owns the upstream connection for the lifetime of the
ASGI call and closes it on every exit: body complete, client disconnect,
task cancellation, or upstream failure mid-stream.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Mapping

from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from imgproxy.core.errors import ProxyTransportError
from imgproxy.core.ports import UpstreamResponse
from imgproxy.core.service import AcceptedImage
from imgproxy.infra.logging_config import get_logger
from imgproxy.infra.metrics import ProxyMetrics

logger = get_logger(__name__)

RELAYED_HEADERS = ("Content-Type", "Cache-Control", "ETag")

DEFAULT_CHUNK_SIZE = 64 * 1024


def is_sendable_header_value(value: str) -> bool:
    """Starlette encodes header values as latin-1; aiohttp may hand us surrogate escapes."""
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        return False
    return True


def relayed_headers(upstream_headers: Mapping[str, str]) -> dict[str, str]:
    """Header subset copied from upstream; everything else is dropped.

    A value that cannot go out on the wire is dropped rather than failing
    the response.
    """
    headers = {}
    for name in RELAYED_HEADERS:
        value = upstream_headers.get(name)
        if not value:
            continue
        if not is_sendable_header_value(value):
            logger.warning("Dropping unsendable upstream header: %s", name)
            continue
        headers[name] = value
    return headers


async def _copy_body(upstream: UpstreamResponse, chunk_size: int, host: str) -> AsyncIterator[bytes]:
    sent = 0
    try:
        async for chunk in upstream.iter_chunks(chunk_size):
            if not chunk:
                continue
            sent += len(chunk)
            yield chunk
    except ProxyTransportError as exc:
        # Headers are already out: abort the connection so the truncation is visible
        ProxyMetrics.relay_aborted("upstream")
        logger.warning(
            "Upstream failed mid-stream: host=%s after %d bytes (%s)", host, sent, exc.detail
        )
        raise
    except (asyncio.CancelledError, GeneratorExit):
        ProxyMetrics.relay_aborted("client")
        logger.info("Client went away mid-stream: host=%s after %d bytes", host, sent)
        raise
    finally:
        await upstream.aclose()
        ProxyMetrics.bytes_relayed(sent)


class RelayedResponse(StreamingResponse):
    """StreamingResponse bound to one upstream connection."""

    def __init__(self, image: AcceptedImage, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.upstream = image.response
        headers = relayed_headers(image.response.headers)
        headers["Content-Type"] = image.content_type
        super().__init__(
            _copy_body(image.response, chunk_size, image.host),
            status_code=200,
            headers=headers,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # Covers the paths where the body iterator never started
            await self.upstream.aclose()


def relay(image: AcceptedImage, chunk_size: int = DEFAULT_CHUNK_SIZE) -> RelayedResponse:
    """Hand an accepted upstream image to the client as a streamed response.

    Ownership of the upstream connection moves to the returned response;
    the caller still owns it if this raises.
    """
    return RelayedResponse(image, chunk_size=chunk_size)

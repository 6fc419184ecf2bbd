# imgproxy/infra/upstream_fetcher.py
"""
Single-hop upstream fetcher over aiohttp.

One call to ``fetch()`` is exactly one outbound GET.  Redirects are never
followed here (``allow_redirects=False``); the redirect resolver decides
what happens with a 3xx.  Transport failures are wrapped in
``ProxyTransportError`` and never retried.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable

import aiohttp

from imgproxy.core.errors import ProxyTransportError
from imgproxy.core.validator import ParsedTarget
from imgproxy.infra.http_client import get_fetcher_session
from imgproxy.infra.logging_config import get_logger
from imgproxy.infra.metrics import inc_counter

logger = get_logger(__name__)


class AiohttpUpstreamResponse:
    """Upstream reply backed by an unread ``aiohttp.ClientResponse``."""

    def __init__(self, response: aiohttp.ClientResponse):
        self._response = response
        self.status_code: int = response.status
        self.headers = response.headers  # CIMultiDictProxy, case-insensitive
        self._exhausted = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        """Yield the body in chunks of at most ``chunk_size`` bytes."""
        try:
            async for chunk in self._response.content.iter_chunked(chunk_size):
                yield chunk
        except asyncio.TimeoutError as e:
            raise ProxyTransportError("Upstream read timed out") from e
        except aiohttp.ClientError as e:
            raise ProxyTransportError(f"Upstream read failed: {e.__class__.__name__}") from e
        self._exhausted = True

    async def aclose(self) -> None:
        """Release a fully read connection, abort a partially read one."""
        if self._closed:
            return
        self._closed = True
        if self._exhausted:
            self._response.release()
        else:
            self._response.close()


class AiohttpUpstreamFetcher:
    """
    Fetch one validated target with the fixed outbound header set.

    Outbound headers:
    - ``User-Agent``: constant identifying string
    - ``Accept``: supported image media types
    - ``Referer``: the upstream's own origin (anti-hotlinking checks)
    """

    def __init__(
        self,
        user_agent: str,
        accept: str,
        timeout: aiohttp.ClientTimeout,
        session_factory: Callable[[], aiohttp.ClientSession] = get_fetcher_session,
    ):
        self.user_agent = user_agent
        self.accept = accept
        self.timeout = timeout
        self._session_factory = session_factory

    @classmethod
    def from_settings(cls, settings) -> "AiohttpUpstreamFetcher":
        return cls(
            user_agent=settings.proxy_user_agent,
            accept=settings.proxy_accept,
            timeout=aiohttp.ClientTimeout(
                total=settings.proxy_hop_timeout_seconds,
                connect=settings.proxy_connect_timeout_seconds,
                sock_read=settings.proxy_read_timeout_seconds,
            ),
            session_factory=lambda: get_fetcher_session(limit=settings.proxy_pool_limit),
        )

    def build_headers(self, target: ParsedTarget) -> dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": self.accept,
            "Referer": target.referer,
        }

    async def fetch(self, target: ParsedTarget) -> AiohttpUpstreamResponse:
        session = self._session_factory()
        inc_counter("proxy_upstream_calls_total", host=target.host)

        try:
            response = await session.get(
                target.url,
                headers=self.build_headers(target),
                timeout=self.timeout,
                allow_redirects=False,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Upstream timeout: host=%s", target.host)
            raise ProxyTransportError("Upstream request timed out") from e
        except aiohttp.ClientError as e:
            logger.warning(
                "Upstream transport error: host=%s error=%s", target.host, e.__class__.__name__
            )
            raise ProxyTransportError(str(e) or e.__class__.__name__) from e

        logger.debug(
            "Upstream response: status=%s host=%s Content-Type=%s Content-Length=%s",
            response.status,
            target.host,
            response.headers.get("Content-Type", "absent"),
            response.headers.get("Content-Length", "absent"),
        )
        return AiohttpUpstreamResponse(response)

# imgproxy/core/ports.py
from __future__ import annotations
from typing import AsyncIterator, Mapping, Protocol

from imgproxy.core.validator import ParsedTarget


class UpstreamResponse(Protocol):
    """
    One upstream reply, scoped to a single hop.

    The holder owns the connection until ``aclose()`` is called.  ``aclose()``
    is idempotent: a fully read body returns the connection to the pool, a
    partially read one aborts it.
    """

    status_code: int
    headers: Mapping[str, str]  # case-insensitive

    def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]: ...
    async def aclose(self) -> None: ...


class UpstreamFetcher(Protocol):
    async def fetch(self, target: ParsedTarget) -> UpstreamResponse:
        """
        Issue exactly one GET to a validated target, redirects disabled.

        Raises:
            ProxyTransportError: DNS, TLS, reset or timeout.
        """
        ...

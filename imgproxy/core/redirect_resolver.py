# imgproxy/core/redirect_resolver.py
"""
Bounded redirect following.

The resolver is an explicit state machine over ``(target, depth)``:

    FETCHING ──3xx+Location──▶ REDIRECTED ──validate──▶ FETCHING
        │                          │
        │ 200                      │ depth > max / host not allowed
        ▼                          ▼
    ACCEPTED                    REJECTED   (also: other status, 3xx w/o Location)

Every hop re-runs the validator, so a redirect towards a host outside the
allowlist is refused before any request is sent to it.  Each response that
is not handed back to the caller is closed before the next hop starts or
before the error is raised.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from imgproxy.core.errors import TooManyRedirects, UpstreamError
from imgproxy.core.ports import UpstreamFetcher, UpstreamResponse
from imgproxy.core.validator import (
    MAX_REDIRECTS,
    AllowedHostSet,
    ParsedTarget,
    resolve_location,
    validate,
)
from imgproxy.infra.logging_config import get_logger

logger = get_logger(__name__)


class ResolverState(str, Enum):
    FETCHING = "fetching"
    REDIRECTED = "redirected"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class ProxyRequest:
    """Current position in a redirect chain."""

    target_url: str
    redirect_depth: int = 0


@dataclass
class Resolution:
    """Accepted final hop. The caller owns ``response`` and must close it."""

    response: UpstreamResponse
    target: ParsedTarget
    request: ProxyRequest


class RedirectResolver:
    """Follow upstream redirects up to ``max_redirects`` hops."""

    def __init__(
        self,
        fetcher: UpstreamFetcher,
        allowed_hosts: AllowedHostSet,
        max_redirects: int = MAX_REDIRECTS,
    ):
        if not 0 <= max_redirects <= MAX_REDIRECTS:
            raise ValueError(f"max_redirects must be between 0 and {MAX_REDIRECTS}")
        self.fetcher = fetcher
        self.allowed_hosts = allowed_hosts
        self.max_redirects = max_redirects

    def validate(self, raw_url: str) -> ParsedTarget:
        return validate(raw_url, self.allowed_hosts)

    async def resolve(self, raw_url: str) -> Resolution:
        """
        Fetch ``raw_url``, following redirects, until a 200 is reached.

        Raises:
            InvalidURL / HostNotAllowed: initial target or any Location fails validation.
            TooManyRedirects: the chain is longer than ``max_redirects``.
            UpstreamError: non-200, non-redirect status, or 3xx without Location.
            ProxyTransportError: propagated from the fetcher.
        """
        request = ProxyRequest(target_url=raw_url)
        target = self.validate(raw_url)
        state = ResolverState.FETCHING

        while state is not ResolverState.ACCEPTED:
            response = await self.fetcher.fetch(target)
            try:
                state = self._transition(response.status_code, response.headers)

                if state is ResolverState.REDIRECTED:
                    # Previous hop is done with before anything else happens
                    await response.aclose()

                    if request.redirect_depth + 1 > self.max_redirects:
                        logger.warning(
                            "Redirect limit reached: depth=%d host=%s",
                            request.redirect_depth, target.host,
                        )
                        raise TooManyRedirects(f"More than {self.max_redirects} redirects")

                    next_target = self.validate(
                        resolve_location(response.headers["Location"], target)
                    )
                    logger.debug(
                        "Redirect hop %d: %d %s -> %s",
                        request.redirect_depth + 1, response.status_code,
                        target.host, next_target.host,
                    )
                    request = ProxyRequest(
                        target_url=next_target.url,
                        redirect_depth=request.redirect_depth + 1,
                    )
                    target = next_target
                    state = ResolverState.FETCHING
            except BaseException:
                await response.aclose()
                raise

        return Resolution(response=response, target=target, request=request)

    @staticmethod
    def _transition(status: int, headers) -> ResolverState:
        """Next state for one upstream reply; raises on the REJECTED edges."""
        if 300 <= status < 400:
            if not headers.get("Location"):
                raise UpstreamError(status, f"Redirect {status} without Location header")
            return ResolverState.REDIRECTED
        if status == 200:
            return ResolverState.ACCEPTED
        raise UpstreamError(status)

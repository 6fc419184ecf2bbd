# imgproxy/core/service.py
"""
Image proxy use case: validate → resolve redirects → classify.

``open()`` returns an upstream response that is ready for relaying, or
raises a ``ProxyError`` with every upstream connection already closed.
"""
from __future__ import annotations

from dataclasses import dataclass

from imgproxy.core.classifier import Accept, classify
from imgproxy.core.errors import NotAnImage, ProxyError
from imgproxy.core.ports import UpstreamResponse
from imgproxy.core.redirect_resolver import RedirectResolver
from imgproxy.infra.logging_config import LogContext, get_logger, mask_url
from imgproxy.infra.metrics import ProxyMetrics

logger = get_logger(__name__)


@dataclass
class AcceptedImage:
    """Classified final hop. Ownership of ``response`` passes to the relay."""

    response: UpstreamResponse
    content_type: str
    host: str
    redirect_depth: int


class ImageProxyService:
    def __init__(self, resolver: RedirectResolver):
        self.resolver = resolver

    async def open(self, raw_url: str, request_id: str | None = None) -> AcceptedImage:
        log = LogContext(logger, request_id=request_id)

        try:
            with ProxyMetrics.track_resolve_time():
                resolution = await self.resolver.resolve(raw_url)
        except ProxyError as exc:
            ProxyMetrics.request_finished(type(exc).__name__)
            log.info(
                "Proxy request rejected: %s (%s) url=%s",
                type(exc).__name__, exc.detail, mask_url(raw_url),
            )
            raise

        response = resolution.response
        log = log.bind(
            target_host=resolution.target.host,
            redirect_depth=resolution.request.redirect_depth,
        )
        ProxyMetrics.redirects_followed(resolution.request.redirect_depth)

        verdict = classify(response)
        if not isinstance(verdict, Accept):
            await response.aclose()
            ProxyMetrics.request_finished(verdict.reason)
            log.warning(
                "Upstream did not return an image: Content-Type=%s",
                response.headers.get("Content-Type", "absent"),
            )
            raise NotAnImage()

        ProxyMetrics.request_finished("accepted")
        log.info("Proxy request accepted: Content-Type=%s", verdict.content_type)
        return AcceptedImage(
            response=response,
            content_type=verdict.content_type,
            host=resolution.target.host,
            redirect_depth=resolution.request.redirect_depth,
        )

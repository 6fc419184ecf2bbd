# imgproxy/transport/proxy_routes.py
"""
Image proxy endpoint.

    GET /proxy/image?url=<percent-encoded absolute https URL>

The same handler is mounted under ``/api/proxy/image``, the path the web
client builds with ``encodeURIComponent``.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from imgproxy.core.service import ImageProxyService
from imgproxy.transport.relay import DEFAULT_CHUNK_SIZE, relay

MISSING_URL_DETAIL = "Missing url query parameter"


def get_proxy_service(request: Request) -> ImageProxyService:
    """Get the proxy service from app state"""
    return request.app.state.proxy_service


async def rate_limit_check(request: Request) -> None:
    """Rate limit dependency for the proxy route"""
    limiter_dep = getattr(request.app.state, "rate_limiter", None)
    if limiter_dep is not None:
        await limiter_dep(request)


router = APIRouter(tags=["Image Proxy"])


@router.get("/proxy/image", dependencies=[Depends(rate_limit_check)])
@router.get("/api/proxy/image", dependencies=[Depends(rate_limit_check)], include_in_schema=False)
async def proxy_image(
    request: Request,
    url: str | None = Query(None, description="Absolute https URL of the image"),
    service: ImageProxyService = Depends(get_proxy_service),
):
    """
    Fetch an allowlisted image and stream it back.

    - 200: image bytes, with upstream Content-Type / Cache-Control / ETag
    - 400: missing, malformed or disallowed URL
    - 502: upstream error status, too many redirects, or non-image content
    - 500: transport failure talking to upstream
    """
    if not url:
        raise HTTPException(status_code=400, detail=MISSING_URL_DETAIL)

    # Query values arrive percent-decoded already; decoding again would let
    # "%252F"-style payloads change meaning after validation.
    request_id = getattr(request.state, "request_id", None)
    image = await service.open(url, request_id=request_id)
    try:
        return relay(image, chunk_size=getattr(request.app.state, "chunk_size", DEFAULT_CHUNK_SIZE))
    except BaseException:
        # The response never took ownership of the upstream connection
        await image.response.aclose()
        raise

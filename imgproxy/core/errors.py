# imgproxy/core/errors.py
"""
Typed errors for the image proxy.

Each error maps to a specific HTTP status code and a JSON body.  The
transport layer catches ``ProxyError`` subtypes in a single exception
handler; route handlers never translate errors themselves.

Every error is terminal for the request: nothing in the proxy retries.
"""
from __future__ import annotations


class ProxyError(Exception):
    """Base class for all proxy errors."""

    status_code: int = 500
    message: str = "Proxy error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.message
        super().__init__(self.detail)

    def to_payload(self, include_details: bool = True) -> dict:
        """JSON body returned to the client."""
        return {"error": self.message}


class InvalidURL(ProxyError):
    """Target is unparsable or not an absolute URL (400)."""

    status_code = 400
    message = "Invalid URL"


class HostNotAllowed(ProxyError):
    """Scheme is not https or host is outside the allowlist (400).

    The payload is fixed text so the allowlist contents are never echoed.
    """

    status_code = 400
    message = "URL not allowed"


class TooManyRedirects(ProxyError):
    """Redirect chain longer than the configured bound (502)."""

    status_code = 502
    message = "Too many redirects"


class UpstreamError(ProxyError):
    """Upstream answered with a status the proxy cannot relay (502)."""

    status_code = 502
    message = "Upstream error"

    def __init__(self, upstream_status: int, detail: str | None = None):
        self.upstream_status = upstream_status
        super().__init__(detail or f"Upstream returned HTTP {upstream_status}")

    def to_payload(self, include_details: bool = True) -> dict:
        return {"error": self.message, "status": self.upstream_status}


class NotAnImage(ProxyError):
    """Final upstream response is not an image (502)."""

    status_code = 502
    message = "Upstream did not return an image"


class ProxyTransportError(ProxyError):
    """DNS, TLS, connection reset or timeout talking to upstream (500)."""

    status_code = 500
    message = "Proxy error"

    def to_payload(self, include_details: bool = True) -> dict:
        payload = {"error": self.message}
        if include_details:
            payload["details"] = self.detail
        return payload

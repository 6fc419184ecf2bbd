# imgproxy/core/__init__.py
"""
Core proxy logic -- no HTTP framework, no concrete network client.

Canonical imports:
    from imgproxy.core import ImageProxyService, RedirectResolver
    from imgproxy.core.validator import AllowedHostSet, validate
    from imgproxy.core.ports import UpstreamFetcher, UpstreamResponse
"""
from imgproxy.core.errors import (  # noqa: F401
    ProxyError,
    InvalidURL,
    HostNotAllowed,
    TooManyRedirects,
    UpstreamError,
    NotAnImage,
    ProxyTransportError,
)
from imgproxy.core.validator import (  # noqa: F401
    MAX_REDIRECTS,
    AllowedHostSet,
    ParsedTarget,
    validate,
)
from imgproxy.core.classifier import Accept, Reject, classify  # noqa: F401
from imgproxy.core.redirect_resolver import (  # noqa: F401
    ProxyRequest,
    RedirectResolver,
    Resolution,
    ResolverState,
)
from imgproxy.core.service import AcceptedImage, ImageProxyService  # noqa: F401
